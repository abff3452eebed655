"""Configuration for manito_verify."""

from __future__ import annotations

from .settings import VerificationSettings, validate_environment

__all__ = ["VerificationSettings", "validate_environment"]
