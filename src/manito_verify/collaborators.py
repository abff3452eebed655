"""
External collaborators consumed by the orchestrator.

The provider-profile directory and document storage live outside the
engine. The protocols here are the whole contract; the in-memory versions
back development, tests and the CLI fixture file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Set, Tuple

from manito_verify.models import ProviderSubject, ReviewAggregate

logger = logging.getLogger(__name__)


class ProfileDirectory(Protocol):
    async def get_subject(self, provider_id: str) -> Optional[ProviderSubject]: ...

    async def get_profile_completeness(self, provider_id: str) -> float: ...

    async def get_review_aggregate(self, provider_id: str) -> ReviewAggregate: ...

    async def get_certification_count(self, provider_id: str) -> int: ...


class DocumentStorage(Protocol):
    async def list_uploaded_document_types(self, provider_id: str) -> Set[str]: ...


class InMemoryProfileDirectory:
    """Dict-backed ProfileDirectory."""

    def __init__(self) -> None:
        self._subjects: Dict[str, ProviderSubject] = {}
        self._completeness: Dict[str, float] = {}
        self._reviews: Dict[str, ReviewAggregate] = {}
        self._certifications: Dict[str, int] = {}

    def add(
        self,
        provider_id: str,
        rut: str,
        full_name: Optional[str] = None,
        completeness: float = 0.0,
        reviews: Optional[ReviewAggregate] = None,
        certifications: int = 0,
    ) -> ProviderSubject:
        subject = ProviderSubject(provider_id=provider_id, rut=rut, full_name=full_name)
        self._subjects[provider_id] = subject
        self._completeness[provider_id] = completeness
        self._reviews[provider_id] = reviews or ReviewAggregate()
        self._certifications[provider_id] = certifications
        return subject

    def set_completeness(self, provider_id: str, completeness: float) -> None:
        self._completeness[provider_id] = completeness

    def set_reviews(self, provider_id: str, reviews: ReviewAggregate) -> None:
        self._reviews[provider_id] = reviews

    def set_certifications(self, provider_id: str, count: int) -> None:
        self._certifications[provider_id] = count

    async def get_subject(self, provider_id: str) -> Optional[ProviderSubject]:
        return self._subjects.get(provider_id)

    async def get_profile_completeness(self, provider_id: str) -> float:
        return self._completeness.get(provider_id, 0.0)

    async def get_review_aggregate(self, provider_id: str) -> ReviewAggregate:
        return self._reviews.get(provider_id, ReviewAggregate())

    async def get_certification_count(self, provider_id: str) -> int:
        return self._certifications.get(provider_id, 0)


class InMemoryDocumentStorage:
    """Set-of-kinds DocumentStorage."""

    def __init__(self) -> None:
        self._documents: Dict[str, Set[str]] = {}

    def upload(self, provider_id: str, *document_types: str) -> None:
        self._documents.setdefault(provider_id, set()).update(document_types)

    def remove(self, provider_id: str, document_type: str) -> None:
        self._documents.get(provider_id, set()).discard(document_type)

    async def list_uploaded_document_types(self, provider_id: str) -> Set[str]:
        return set(self._documents.get(provider_id, set()))


def load_fixtures(path: Path) -> Tuple[InMemoryProfileDirectory, InMemoryDocumentStorage, Dict[str, Any]]:
    """
    Load providers and documents from a JSON fixture file.

    Format::

        {
          "providers": {
            "prov-1": {
              "rut": "12.345.678-5",
              "full_name": "Ana Rojas",
              "profile_completeness": 0.8,
              "reviews": {"count": 4, "average_rating": 4.5},
              "certifications": 2,
              "documents": ["cedula_front", "cedula_back", "selfie"]
            }
          },
          "stand_in": {"background_flagged": ["11.111.111-1"]}
        }

    Returns:
        (profiles, documents, stand_in options)
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    profiles = InMemoryProfileDirectory()
    documents = InMemoryDocumentStorage()

    for provider_id, raw in (data.get("providers") or {}).items():
        reviews = raw.get("reviews") or {}
        profiles.add(
            provider_id,
            rut=raw["rut"],
            full_name=raw.get("full_name"),
            completeness=float(raw.get("profile_completeness", 0.0)),
            reviews=ReviewAggregate(
                count=int(reviews.get("count", 0)),
                average_rating=float(reviews.get("average_rating", 0.0)),
            ),
            certifications=int(raw.get("certifications", 0)),
        )
        documents.upload(provider_id, *raw.get("documents", []))

    logger.info(f"Loaded {len(data.get('providers') or {})} providers from {path}")
    return profiles, documents, dict(data.get("stand_in") or {})
