"""Shared fixtures for verification engine tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from manito_verify.collaborators import InMemoryDocumentStorage, InMemoryProfileDirectory
from manito_verify.models import ReviewAggregate
from manito_verify.notifications import InMemoryNotificationGate, NotificationDispatcher
from manito_verify.orchestrator import VerificationOrchestrator
from manito_verify.retry import RetryConfig
from manito_verify.store import VerificationStore
from manito_verify.validators import (
    StandInBackgroundCheckValidator,
    StandInBiometricValidator,
    StandInRutIdentityValidator,
    ValidatorSet,
)

PROVIDER_ID = "prov-1"
PROVIDER_RUT = "12.345.678-5"
REQUIRED_DOCS = ("cedula_front", "cedula_back", "selfie")

FAST_RETRY = RetryConfig(max_attempts=2, base_delay_ms=0.0, jitter=0.0)


class TickingClock:
    """Deterministic clock: each call is one second after the previous."""

    def __init__(self, start=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
async def store(temp_dir):
    """Create an initialized VerificationStore."""
    store = VerificationStore(temp_dir / "verification.db")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def profiles():
    directory = InMemoryProfileDirectory()
    directory.add(
        PROVIDER_ID,
        rut=PROVIDER_RUT,
        full_name="Ana Rojas",
        completeness=0.8,
        reviews=ReviewAggregate(count=4, average_rating=4.5),
        certifications=2,
    )
    return directory


@pytest.fixture
def documents():
    storage = InMemoryDocumentStorage()
    storage.upload(PROVIDER_ID, *REQUIRED_DOCS)
    return storage


@pytest.fixture
def gate():
    return InMemoryNotificationGate()


@pytest.fixture
def make_validators():
    """Factory for stand-in validator sets with known answers."""

    def _make(
        rut_invalid=(),
        rut_not_found=(),
        flagged=(),
        criminal=(),
        scores=None,
        timeout=1.0,
    ):
        common = {"timeout": timeout, "retry": FAST_RETRY}
        return ValidatorSet(
            rut_identity=StandInRutIdentityValidator(
                not_found=rut_not_found, invalid=rut_invalid, **common
            ),
            background_check=StandInBackgroundCheckValidator(
                flagged=flagged, criminal=criminal, **common
            ),
            biometric_match=StandInBiometricValidator(
                scores=scores if scores is not None else {PROVIDER_ID: 0.92}, **common
            ),
        )

    return _make


@pytest.fixture
def make_orchestrator(store, profiles, documents, gate, make_validators):
    """Factory for orchestrators sharing the fixture store and collaborators."""

    def _make(validators=None, **kwargs):
        kwargs.setdefault("clock", TickingClock())
        return VerificationOrchestrator(
            store=store,
            validators=validators or make_validators(),
            profiles=profiles,
            documents=documents,
            notifier=NotificationDispatcher(gate),
            **kwargs,
        )

    return _make
