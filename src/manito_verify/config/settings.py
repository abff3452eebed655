"""Runtime settings for the verification engine.

Values come from ``MANITO_*`` environment variables (a ``.env`` file is
loaded first when present) with the constants in ``defaults`` as fallbacks.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from manito_verify.config.defaults import (
    BIOMETRIC_BASE_URL,
    BIOMETRIC_MATCH_THRESHOLD,
    DEFAULT_DB_FILENAME,
    DEFAULT_STATE_DIR,
    PARALLEL_CHECKS_ENABLED,
    PODER_JUDICIAL_BASE_URL,
    REGISTRO_CIVIL_BASE_URL,
    RETRY_BASE_DELAY_MS,
    RETRY_MAX_ATTEMPTS,
    RUT_FAILURE_POLICY,
    VALIDATOR_TIMEOUT_SECONDS,
)

VALIDATOR_MODES = ("auto", "live", "stand_in")
RUT_FAILURE_POLICIES = ("reject", "manual_review")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class VerificationSettings:
    """Process-wide configuration, evaluated once at startup."""

    db_path: Path = field(default_factory=lambda: Path(DEFAULT_STATE_DIR) / DEFAULT_DB_FILENAME)
    history_mirror_path: Optional[Path] = None

    validator_mode: str = "auto"
    api_key: Optional[str] = None
    registro_civil_url: str = REGISTRO_CIVIL_BASE_URL
    poder_judicial_url: str = PODER_JUDICIAL_BASE_URL
    biometric_url: str = BIOMETRIC_BASE_URL

    validator_timeout: float = VALIDATOR_TIMEOUT_SECONDS
    retry_max_attempts: int = RETRY_MAX_ATTEMPTS
    retry_base_delay_ms: float = RETRY_BASE_DELAY_MS

    biometric_threshold: float = BIOMETRIC_MATCH_THRESHOLD
    rut_failure_policy: str = RUT_FAILURE_POLICY
    parallel_checks: bool = PARALLEL_CHECKS_ENABLED

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "VerificationSettings":
        """Create settings from environment variables."""
        if dotenv:
            load_dotenv()
        mirror = os.environ.get("MANITO_HISTORY_MIRROR")
        return cls(
            db_path=Path(os.environ.get(
                "MANITO_DB_PATH", str(Path(DEFAULT_STATE_DIR) / DEFAULT_DB_FILENAME))),
            history_mirror_path=Path(mirror) if mirror else None,
            validator_mode=os.environ.get("MANITO_VALIDATOR_MODE", "auto").lower(),
            api_key=os.environ.get("MANITO_VALIDATOR_API_KEY") or None,
            registro_civil_url=os.environ.get("MANITO_REGISTRO_CIVIL_URL", REGISTRO_CIVIL_BASE_URL),
            poder_judicial_url=os.environ.get("MANITO_PODER_JUDICIAL_URL", PODER_JUDICIAL_BASE_URL),
            biometric_url=os.environ.get("MANITO_BIOMETRIC_URL", BIOMETRIC_BASE_URL),
            validator_timeout=float(os.environ.get(
                "MANITO_VALIDATOR_TIMEOUT", str(VALIDATOR_TIMEOUT_SECONDS))),
            retry_max_attempts=int(os.environ.get(
                "MANITO_RETRY_MAX_ATTEMPTS", str(RETRY_MAX_ATTEMPTS))),
            retry_base_delay_ms=float(os.environ.get(
                "MANITO_RETRY_BASE_DELAY_MS", str(RETRY_BASE_DELAY_MS))),
            biometric_threshold=float(os.environ.get(
                "MANITO_BIOMETRIC_THRESHOLD", str(BIOMETRIC_MATCH_THRESHOLD))),
            rut_failure_policy=os.environ.get(
                "MANITO_RUT_FAILURE_POLICY", RUT_FAILURE_POLICY).lower(),
            parallel_checks=_env_bool("MANITO_PARALLEL_CHECKS", PARALLEL_CHECKS_ENABLED),
        )

    def resolve_validator_mode(self) -> str:
        """Return ``live`` or ``stand_in`` for the configured mode.

        ``auto`` picks live integrations only when an API key is present.
        Unknown modes fall back to ``auto``.
        """
        mode = self.validator_mode if self.validator_mode in VALIDATOR_MODES else "auto"
        if mode == "auto":
            return "live" if self.api_key else "stand_in"
        return mode


@dataclass
class EnvValidationResult:
    """Result of environment validation."""

    validator_mode: str
    resolved_mode: str
    api_key_set: bool
    is_valid: bool
    missing_required: list[str]
    warnings: list[str]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "validator_mode": self.validator_mode,
            "resolved_mode": self.resolved_mode,
            "api_key_configured": self.api_key_set,
            "is_valid": self.is_valid,
            "missing_required": self.missing_required,
            "warnings": self.warnings,
        }


def validate_environment(settings: Optional[VerificationSettings] = None) -> EnvValidationResult:
    """
    Check that the settings are usable.

    Returns:
        EnvValidationResult with configuration status and any warnings
    """
    settings = settings or VerificationSettings.from_env()
    missing_required = []
    warnings = []

    if settings.validator_mode not in VALIDATOR_MODES:
        warnings.append(
            f"Unknown MANITO_VALIDATOR_MODE: {settings.validator_mode}. Using 'auto'."
        )
    if settings.validator_mode == "live" and not settings.api_key:
        missing_required.append("MANITO_VALIDATOR_API_KEY (required for live mode)")
    if settings.api_key and settings.validator_mode == "stand_in":
        warnings.append("MANITO_VALIDATOR_API_KEY is set but MANITO_VALIDATOR_MODE=stand_in")
    if settings.resolve_validator_mode() == "stand_in":
        warnings.append("Stand-in validators active: results are provisional")
    if settings.rut_failure_policy not in RUT_FAILURE_POLICIES:
        missing_required.append(
            f"MANITO_RUT_FAILURE_POLICY must be one of {', '.join(RUT_FAILURE_POLICIES)}"
        )
    if not 0.0 < settings.biometric_threshold <= 1.0:
        missing_required.append("MANITO_BIOMETRIC_THRESHOLD must be in (0, 1]")
    if settings.retry_max_attempts < 1:
        missing_required.append("MANITO_RETRY_MAX_ATTEMPTS must be at least 1")

    return EnvValidationResult(
        validator_mode=settings.validator_mode,
        resolved_mode=settings.resolve_validator_mode(),
        api_key_set=bool(settings.api_key),
        is_valid=not missing_required,
        missing_required=missing_required,
        warnings=warnings,
    )
