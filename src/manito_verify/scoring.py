"""
Trust score calculator.

Maps a provider's accumulated verification facts to a 0-100 score, a
per-factor breakdown and a tier. Pure and deterministic: identical facts
always produce an identical record (``calculated_at`` aside).
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, Mapping, Optional

from manito_verify.config.defaults import (
    BACKGROUND_FLAGGED_CREDIT,
    BIOMETRIC_MATCH_THRESHOLD,
    BIOMETRIC_PARTIAL_CREDIT,
    BIOMETRIC_PARTIAL_THRESHOLD,
    CERTIFICATION_SATURATION,
    LEGACY_APPROVE_THRESHOLD,
    LEGACY_BACKGROUND_WEIGHT,
    LEGACY_FLAGGED_WEIGHT,
    LEGACY_REVIEW_THRESHOLD,
    LEGACY_RUT_WEIGHT,
    PROVISIONAL_SOURCE_CREDIT,
    REVIEW_COUNT_SATURATION,
    REVIEW_RATING_MAX,
    TRUST_SCORE_MAX,
    TRUST_TIER_THRESHOLDS,
    TRUST_WEIGHTS,
)
from manito_verify.models import (
    TrustFacts,
    TrustScoreRecord,
    TrustTier,
    ValidationSource,
    ValidationStatus,
    utc_now,
)


def validate_weights(weights: Mapping[str, float]) -> None:
    """Raise ValueError unless weights cover every factor and sum to 1.0."""
    missing = set(TRUST_WEIGHTS) - set(weights)
    if missing:
        raise ValueError(f"Missing trust weights: {', '.join(sorted(missing))}")
    if any(w < 0 for w in weights.values()):
        raise ValueError("Trust weights must be non-negative")
    total = sum(weights.values())
    if not math.isclose(total, 1.0, abs_tol=1e-9):
        raise ValueError(f"Trust weights must sum to 1.0, got {total}")


validate_weights(TRUST_WEIGHTS)


def _source_factor(source: Optional[ValidationSource]) -> float:
    if source is None or source.is_authoritative:
        return 1.0
    return PROVISIONAL_SOURCE_CREDIT


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def factor_credits(
    facts: TrustFacts,
    biometric_threshold: float = BIOMETRIC_MATCH_THRESHOLD,
) -> Dict[str, float]:
    """Credit in [0, 1] earned by each factor."""
    rut = 1.0 if facts.rut_status == ValidationStatus.VALID else 0.0
    rut *= _source_factor(facts.rut_source)

    if facts.background_status == ValidationStatus.CLEAN:
        background = 1.0
    elif facts.background_status == ValidationStatus.FLAGGED:
        background = BACKGROUND_FLAGGED_CREDIT
    else:
        background = 0.0
    background *= _source_factor(facts.background_source)

    identity = 0.0
    if facts.biometric_score is not None:
        if facts.biometric_score >= biometric_threshold:
            identity = 1.0
        elif facts.biometric_score >= BIOMETRIC_PARTIAL_THRESHOLD:
            identity = BIOMETRIC_PARTIAL_CREDIT
    identity *= _source_factor(facts.biometric_source)

    reviews = 0.0
    if facts.review_count > 0:
        rating = _clamp(facts.average_rating / REVIEW_RATING_MAX)
        volume = min(facts.review_count, REVIEW_COUNT_SATURATION) / REVIEW_COUNT_SATURATION
        reviews = rating * volume

    certifications = min(max(facts.certification_count, 0), CERTIFICATION_SATURATION)

    return {
        "rut_verification": rut,
        "background_check": background,
        "identity_verification": identity,
        "profile_completion": _clamp(facts.profile_completeness),
        "review_history": reviews,
        "certifications": certifications / CERTIFICATION_SATURATION,
    }


def tier_for(score: float) -> TrustTier:
    """Map a score to its tier; non-decreasing in ``score``."""
    for minimum, tier in TRUST_TIER_THRESHOLDS:
        if score >= minimum:
            return TrustTier(tier)
    return TrustTier.UNVERIFIED


def score(
    facts: TrustFacts,
    weights: Optional[Mapping[str, float]] = None,
    biometric_threshold: float = BIOMETRIC_MATCH_THRESHOLD,
    calculated_at: Optional[datetime] = None,
) -> TrustScoreRecord:
    """
    Compute the trust score for a set of facts.

    Args:
        facts: Validator outcomes plus profile, review and certification facts
        weights: Factor weights (defaults to TRUST_WEIGHTS); must sum to 1.0
        biometric_threshold: Face-match score that earns full identity credit
        calculated_at: Timestamp for the record (defaults to now)

    Returns:
        TrustScoreRecord whose breakdown sums to ``score`` within rounding
    """
    weights = dict(weights) if weights is not None else TRUST_WEIGHTS
    if weights is not TRUST_WEIGHTS:
        validate_weights(weights)

    credits = factor_credits(facts, biometric_threshold)
    breakdown = {
        name: round(weights[name] * credits[name] * TRUST_SCORE_MAX, 2)
        for name in TRUST_WEIGHTS
    }
    total = round(sum(breakdown.values()), 2)

    return TrustScoreRecord(
        score=total,
        tier=tier_for(total),
        breakdown=breakdown,
        calculated_at=calculated_at or utc_now(),
    )


def legacy_recommendation(
    rut_status: Optional[ValidationStatus],
    background_status: Optional[ValidationStatus],
) -> str:
    """
    Two-factor weighting used by older onboarding screens.

    Returns ``approve``, ``review`` or ``reject``. Independent of the
    six-factor score above.
    """
    value = 0.0
    if rut_status == ValidationStatus.VALID:
        value += LEGACY_RUT_WEIGHT
    if background_status == ValidationStatus.CLEAN:
        value += LEGACY_BACKGROUND_WEIGHT
    elif background_status == ValidationStatus.FLAGGED:
        value += LEGACY_FLAGGED_WEIGHT

    value = round(value, 4)
    if value >= LEGACY_APPROVE_THRESHOLD:
        return "approve"
    if value >= LEGACY_REVIEW_THRESHOLD:
        return "review"
    return "reject"
