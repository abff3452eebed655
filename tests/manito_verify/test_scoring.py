"""Tests for the trust score calculator."""

import itertools
from datetime import datetime, timezone

import pytest

from manito_verify.config.defaults import TRUST_ROUNDING_TOLERANCE, TRUST_WEIGHTS
from manito_verify.models import TrustFacts, TrustTier, ValidationSource, ValidationStatus
from manito_verify.scoring import (
    factor_credits,
    legacy_recommendation,
    score,
    tier_for,
    validate_weights,
)

FIXED_TIME = datetime(2024, 3, 1, tzinfo=timezone.utc)


def authoritative_facts(**overrides):
    values = dict(
        rut_status=ValidationStatus.VALID,
        rut_source=ValidationSource.REGISTRO_CIVIL,
        background_status=ValidationStatus.CLEAN,
        background_source=ValidationSource.PODER_JUDICIAL,
        biometric_score=0.92,
        biometric_source=ValidationSource.BIOMETRIC_SERVICE,
        profile_completeness=0.8,
        review_count=4,
        average_rating=4.5,
        certification_count=2,
    )
    values.update(overrides)
    return TrustFacts(**values)


class TestScore:
    def test_full_authoritative_breakdown(self):
        record = score(authoritative_facts(), calculated_at=FIXED_TIME)

        assert record.breakdown == {
            "rut_verification": 25.0,
            "background_check": 20.0,
            "identity_verification": 20.0,
            "profile_completion": 12.0,
            "review_history": 3.6,
            "certifications": 4.0,
        }
        assert record.score == pytest.approx(84.6)
        assert record.tier == TrustTier.ELITE
        assert record.calculated_at == FIXED_TIME

    def test_stand_in_results_earn_provisional_credit(self):
        record = score(authoritative_facts(
            rut_source=ValidationSource.STAND_IN,
            background_source=ValidationSource.STAND_IN,
            biometric_source=ValidationSource.STAND_IN,
        ))

        assert record.breakdown["rut_verification"] == 20.0
        assert record.breakdown["background_check"] == 16.0
        assert record.breakdown["identity_verification"] == 16.0
        assert record.score == pytest.approx(71.6)
        assert record.tier == TrustTier.PREMIUM

    def test_no_facts_is_unverified(self):
        record = score(TrustFacts())
        assert record.score == 0.0
        assert record.tier == TrustTier.UNVERIFIED
        assert set(record.breakdown) == set(TRUST_WEIGHTS)

    def test_flagged_background_partial_credit(self):
        record = score(authoritative_facts(background_status=ValidationStatus.FLAGGED))
        assert record.breakdown["background_check"] == 8.0

    def test_criminal_record_earns_nothing(self):
        record = score(authoritative_facts(background_status=ValidationStatus.CRIMINAL_RECORD))
        assert record.breakdown["background_check"] == 0.0

    @pytest.mark.parametrize(
        "biometric,expected",
        [(0.92, 20.0), (0.85, 20.0), (0.75, 12.0), (0.70, 12.0), (0.5, 0.0), (None, 0.0)],
    )
    def test_identity_credit_bands(self, biometric, expected):
        record = score(authoritative_facts(biometric_score=biometric))
        assert record.breakdown["identity_verification"] == expected

    def test_custom_biometric_threshold(self):
        record = score(authoritative_facts(biometric_score=0.88), biometric_threshold=0.9)
        assert record.breakdown["identity_verification"] == 12.0

    def test_review_and_certification_saturation(self):
        credits = factor_credits(authoritative_facts(
            review_count=50, average_rating=5.0, certification_count=12,
        ))
        assert credits["review_history"] == 1.0
        assert credits["certifications"] == 1.0

    def test_profile_completeness_clamped(self):
        assert factor_credits(authoritative_facts(profile_completeness=1.7))["profile_completion"] == 1.0
        assert factor_credits(authoritative_facts(profile_completeness=-0.2))["profile_completion"] == 0.0

    def test_deterministic(self):
        facts = authoritative_facts(biometric_score=0.777, profile_completeness=0.333)
        first = score(facts, calculated_at=FIXED_TIME)
        second = score(facts, calculated_at=FIXED_TIME)
        assert first == second

    def test_breakdown_sums_to_score(self):
        statuses = [ValidationStatus.VALID, ValidationStatus.INVALID, None]
        backgrounds = [ValidationStatus.CLEAN, ValidationStatus.FLAGGED, None]
        biometrics = [0.99, 0.71, 0.1, None]
        completeness = [0.0, 0.333, 0.9]
        sources = [ValidationSource.STAND_IN, ValidationSource.REGISTRO_CIVIL]

        for rut, bg, bio, comp, src in itertools.product(
            statuses, backgrounds, biometrics, completeness, sources
        ):
            record = score(TrustFacts(
                rut_status=rut,
                rut_source=src,
                background_status=bg,
                background_source=src,
                biometric_score=bio,
                biometric_source=src,
                profile_completeness=comp,
                review_count=3,
                average_rating=3.7,
                certification_count=1,
            ))
            assert abs(sum(record.breakdown.values()) - record.score) <= TRUST_ROUNDING_TOLERANCE
            assert 0.0 <= record.score <= 100.0

    def test_custom_weights(self):
        weights = dict(TRUST_WEIGHTS, rut_verification=0.35, certifications=0.0)
        record = score(authoritative_facts(), weights=weights)
        assert record.breakdown["rut_verification"] == 35.0
        assert record.breakdown["certifications"] == 0.0


class TestWeights:
    def test_defaults_sum_to_one(self):
        validate_weights(TRUST_WEIGHTS)

    def test_rejects_bad_sum(self):
        with pytest.raises(ValueError, match="sum to 1.0"):
            validate_weights(dict(TRUST_WEIGHTS, certifications=0.5))

    def test_rejects_missing_factor(self):
        weights = dict(TRUST_WEIGHTS)
        del weights["review_history"]
        with pytest.raises(ValueError, match="review_history"):
            validate_weights(weights)

    def test_score_rejects_invalid_weights(self):
        with pytest.raises(ValueError):
            score(TrustFacts(), weights=dict(TRUST_WEIGHTS, rut_verification=0.9))


class TestTiers:
    @pytest.mark.parametrize(
        "value,tier",
        [
            (100.0, TrustTier.ELITE),
            (80.0, TrustTier.ELITE),
            (79.99, TrustTier.PREMIUM),
            (60.0, TrustTier.PREMIUM),
            (40.0, TrustTier.VERIFIED),
            (20.0, TrustTier.BASIC),
            (19.99, TrustTier.UNVERIFIED),
            (0.0, TrustTier.UNVERIFIED),
        ],
    )
    def test_cutoffs(self, value, tier):
        assert tier_for(value) == tier

    def test_tier_is_monotonic_in_score(self):
        ranks = [tier_for(step / 4).rank for step in range(0, 401)]
        assert ranks == sorted(ranks)


class TestLegacyRecommendation:
    @pytest.mark.parametrize(
        "rut,background,expected",
        [
            (ValidationStatus.VALID, ValidationStatus.CLEAN, "approve"),
            (ValidationStatus.VALID, ValidationStatus.FLAGGED, "approve"),
            (ValidationStatus.VALID, None, "review"),
            (None, ValidationStatus.CLEAN, "review"),
            (None, ValidationStatus.FLAGGED, "reject"),
            (ValidationStatus.INVALID, ValidationStatus.CRIMINAL_RECORD, "reject"),
        ],
    )
    def test_recommendation(self, rut, background, expected):
        assert legacy_recommendation(rut, background) == expected
