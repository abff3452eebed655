"""
Validator providers - one capability per verification check.

Each kind has a live variant (government / vendor integration) and a
deterministic stand-in used when no live credential is configured.
"""

from __future__ import annotations

from .background import (
    BackgroundCheckValidator,
    LiveBackgroundCheckValidator,
    StandInBackgroundCheckValidator,
)
from .base import Validator
from .biometric import BiometricValidator, LiveBiometricValidator, StandInBiometricValidator
from .factory import ValidatorSet, build_validators
from .http import AuthorityClient
from .rut_identity import (
    LiveRutIdentityValidator,
    RutIdentityValidator,
    StandInRutIdentityValidator,
)

__all__ = [
    "Validator",
    "ValidatorSet",
    "build_validators",
    "AuthorityClient",
    "RutIdentityValidator",
    "LiveRutIdentityValidator",
    "StandInRutIdentityValidator",
    "BackgroundCheckValidator",
    "LiveBackgroundCheckValidator",
    "StandInBackgroundCheckValidator",
    "BiometricValidator",
    "LiveBiometricValidator",
    "StandInBiometricValidator",
]
