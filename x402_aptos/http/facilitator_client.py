"""HTTP-based facilitator client for x402 Aptos payments."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError
from typing_extensions import Self

from ..interfaces import Requirement
from ..schemas import Challenge, FacilitatorError, PaymentProof, VerificationResult
from .constants import DEFAULT_FACILITATOR_TIMEOUT_SECONDS, DEFAULT_FACILITATOR_URL

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class FacilitatorConfig:
    """Configuration for HTTP facilitator client."""

    url: str = DEFAULT_FACILITATOR_URL
    timeout: float = DEFAULT_FACILITATOR_TIMEOUT_SECONDS
    http_client: Any = None  # Optional httpx.AsyncClient
    headers: dict[str, str] = field(default_factory=dict)


# ============================================================================
# HTTP Facilitator Client
# ============================================================================


class HTTPFacilitatorClient:
    """Remote LedgerVerifier reached over the facilitator's HTTP API.

    Satisfies the same ``verify`` contract as the in-process verifiers,
    so the gateway cannot tell them apart. Transport problems raise
    FacilitatorError; the gateway answers those with a 500.
    """

    mode = "remote"

    def __init__(self, config: FacilitatorConfig | dict[str, Any] | None = None) -> None:
        """Create HTTP facilitator client.

        Args:
            config: Optional configuration. Accepts either:
                - FacilitatorConfig dataclass (recommended)
                - Dict with 'url' and optional 'timeout'/'headers'
                - None (uses defaults)
        """
        if isinstance(config, dict):
            config = FacilitatorConfig(
                url=config.get("url", DEFAULT_FACILITATOR_URL),
                timeout=config.get("timeout", DEFAULT_FACILITATOR_TIMEOUT_SECONDS),
                headers=dict(config.get("headers") or {}),
            )
        config = config or FacilitatorConfig()

        self._url = config.url.rstrip("/")
        self._timeout = config.timeout
        self._headers = config.headers
        self._http_client: httpx.AsyncClient | None = config.http_client
        self._owns_client = config.http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def url(self) -> str:
        """Get facilitator URL."""
        return self._url

    # =========================================================================
    # LedgerVerifier Implementation
    # =========================================================================

    async def verify(
        self,
        proof: PaymentProof,
        requirement: Requirement = None,
    ) -> VerificationResult:
        """Verify a payment with the facilitator.

        A Challenge requirement travels as the proof's echoed challenge.
        A PriceSpec requirement is checked by the caller before this call.

        Args:
            proof: Payment proof to verify.
            requirement: Challenge or price the proof must satisfy.

        Returns:
            VerificationResult from the facilitator.

        Raises:
            FacilitatorError: If the facilitator is unreachable or misbehaves.
        """
        if isinstance(requirement, Challenge) and proof.challenge is None:
            proof = proof.model_copy(update={"challenge": requirement})

        data = await self._request(
            "POST",
            "/verify",
            json=proof.model_dump(by_alias=True, exclude_none=True, mode="json"),
        )
        try:
            return VerificationResult.model_validate(data)
        except ValidationError as e:
            raise FacilitatorError(f"Facilitator returned an invalid verify response: {e}") from e

    async def get_transaction(self, transaction_id: str) -> dict[str, Any]:
        """Look up a transaction through the facilitator."""
        return await self._request("GET", f"/transaction/{transaction_id}")

    async def health(self) -> dict[str, Any]:
        """Fetch the facilitator's health document."""
        return await self._request("GET", "/health")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = self._get_client()
        try:
            response = await client.request(
                method, f"{self._url}{path}", headers=self._headers, **kwargs
            )
        except httpx.HTTPError as e:
            logger.error("Facilitator %s %s failed: %s", method, path, e)
            raise FacilitatorError(f"Facilitator request failed: {e}") from e

        if response.status_code != 200:
            raise FacilitatorError(
                f"Facilitator {path} failed ({response.status_code}): {response.text}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise FacilitatorError(f"Facilitator returned invalid JSON for {path}") from e
