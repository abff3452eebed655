"""HTTP access to live verification authorities.

Maps transport failures, throttling and 5xx responses to
TransientValidatorError and any other 4xx to ValidatorError.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from manito_verify.circuit_breaker import CircuitBreaker, CircuitBreakerManager
from manito_verify.config.defaults import (
    HTTP_CONNECT_TIMEOUT_SECONDS,
    REQUEST_SOURCE_HEADER,
    VALIDATOR_TIMEOUT_SECONDS,
)
from manito_verify.errors import TransientValidatorError, ValidatorError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = (408, 429, 500, 502, 503, 504)


class AuthorityClient:
    """Authenticated JSON client for one authority, behind a circuit breaker."""

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        breakers: Optional[CircuitBreakerManager] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(VALIDATOR_TIMEOUT_SECONDS, connect=HTTP_CONNECT_TIMEOUT_SECONDS)
        )
        self.breaker: CircuitBreaker = (breakers or CircuitBreakerManager()).get_breaker(name)

    async def post(self, path: str, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded JSON body."""
        return await self.breaker.call(self._post, path, kind, payload)

    async def _post(self, path: str, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        body = {**payload, "requestId": f"manito_{kind}_{uuid.uuid4().hex[:12]}"}
        try:
            resp = await self._client.post(
                url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "X-Source": REQUEST_SOURCE_HEADER,
                },
                json=body,
            )
        except httpx.TransportError as e:
            raise TransientValidatorError(kind, f"{self.name} unreachable: {type(e).__name__}") from e

        if resp.status_code in TRANSIENT_STATUS_CODES:
            raise TransientValidatorError(kind, f"{self.name} returned {resp.status_code}")
        if resp.status_code >= 400:
            raise ValidatorError(
                kind, f"{self.name} rejected request: {resp.text[:200]}", resp.status_code
            )

        try:
            return resp.json()
        except ValueError as e:
            raise TransientValidatorError(kind, f"{self.name} sent a malformed body") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
