"""Default configuration values for provider verification.

This module centralizes the hard-coded numbers (weights, thresholds,
timeouts, retry and circuit-breaker settings) into a single location.
All modules should import these constants instead of hard-coding values.

Usage:
    from manito_verify.config.defaults import (
        TRUST_WEIGHTS,
        BIOMETRIC_MATCH_THRESHOLD,
        RETRY_MAX_ATTEMPTS,
    )
"""

from __future__ import annotations

# =============================================================================
# Documents
# =============================================================================

# Minimum identity-document set gating documents_upload -> rut_validation
REQUIRED_DOCUMENT_TYPES = frozenset({"cedula_front", "cedula_back", "selfie"})


# =============================================================================
# Biometric Defaults
# =============================================================================

BIOMETRIC_MATCH_THRESHOLD = 0.85
BIOMETRIC_PARTIAL_THRESHOLD = 0.70


# =============================================================================
# Trust Score Defaults
# =============================================================================

# Six-factor weights; must sum to 1.0
TRUST_WEIGHTS = {
    "rut_verification": 0.25,
    "background_check": 0.20,
    "identity_verification": 0.20,
    "profile_completion": 0.15,
    "review_history": 0.10,
    "certifications": 0.10,
}

TRUST_SCORE_MAX = 100.0
TRUST_ROUNDING_TOLERANCE = 0.05

# Ordered highest first: (minimum score, tier)
TRUST_TIER_THRESHOLDS = (
    (80.0, "elite"),
    (60.0, "premium"),
    (40.0, "verified"),
    (20.0, "basic"),
    (0.0, "unverified"),
)

BACKGROUND_FLAGGED_CREDIT = 0.4
BIOMETRIC_PARTIAL_CREDIT = 0.6
PROVISIONAL_SOURCE_CREDIT = 0.8  # stand-in results are not authoritative

REVIEW_COUNT_SATURATION = 10
REVIEW_RATING_MAX = 5.0
CERTIFICATION_SATURATION = 5

# Legacy two-factor weighting (kept separate from the six-factor score)
LEGACY_RUT_WEIGHT = 0.6
LEGACY_BACKGROUND_WEIGHT = 0.4
LEGACY_FLAGGED_WEIGHT = 0.2
LEGACY_APPROVE_THRESHOLD = 0.8
LEGACY_REVIEW_THRESHOLD = 0.4


# =============================================================================
# Retry Defaults
# =============================================================================

RETRY_MAX_ATTEMPTS = 3
RETRY_BASE_DELAY_MS = 500.0
RETRY_MAX_DELAY_MS = 10000.0
RETRY_BACKOFF_MULTIPLIER = 2.0
RETRY_JITTER_FACTOR = 0.1


# =============================================================================
# Timeout Defaults
# =============================================================================

VALIDATOR_TIMEOUT_SECONDS = 30.0
HTTP_CONNECT_TIMEOUT_SECONDS = 10.0
NOTIFICATION_TIMEOUT_SECONDS = 5.0


# =============================================================================
# Circuit Breaker Defaults
# =============================================================================

CIRCUIT_BREAKER_FAILURE_THRESHOLD = 5
CIRCUIT_BREAKER_SUCCESS_THRESHOLD = 2
CIRCUIT_BREAKER_TIMEOUT_SECONDS = 60.0
CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS = 1


# =============================================================================
# Live Authorities
# =============================================================================

REGISTRO_CIVIL_BASE_URL = "https://api.registrocivil.cl"
PODER_JUDICIAL_BASE_URL = "https://api.pjud.cl"
BIOMETRIC_BASE_URL = "https://api.biometria.manito.cl"
REQUEST_SOURCE_HEADER = "manito-marketplace"


# =============================================================================
# Workflow Policy
# =============================================================================

RUT_FAILURE_POLICY = "reject"  # "reject" | "manual_review"
PARALLEL_CHECKS_ENABLED = False

# Manual review priority: 1=low, 2=normal, 3=high, 4=urgent
PRIORITY_NORMAL = 2
PRIORITY_HIGH = 3


# =============================================================================
# Storage
# =============================================================================

DEFAULT_DB_FILENAME = "verification.db"
DEFAULT_STATE_DIR = ".manito"
