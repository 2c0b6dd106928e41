"""httpx wrapper with automatic x402 payment handling.

The driver sends the request as given. A 402 answer is turned into a
signed proof and the request is retried exactly once; any other status
is returned untouched.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from typing_extensions import Self

from ...interfaces import LedgerClient, PaymentSigner
from ...schemas import (
    Challenge,
    ExpiredChallengeError,
    InsufficientBalanceError,
    MalformedChallengeError,
    PaymentAmountExceededError,
    PaymentProof,
    PaymentRejectedError,
    now_ms,
)
from ..constants import PAYMENT_HEADER, PAYMENT_REQUIRED_STATUS
from ..utils import encode_payment_header, parse_payment_required

logger = logging.getLogger(__name__)


@dataclass
class RequestOptions:
    """How to issue a request through the payment driver."""

    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    json: Any = None
    content: bytes | str | None = None
    params: dict[str, Any] | None = None
    timeout: float | None = None
    max_amount: int | None = None


def parse_challenge(response: httpx.Response) -> Challenge:
    """Extract the challenge from a 402 response.

    Raises:
        MalformedChallengeError: If the body carries no usable challenge.
    """
    return parse_payment_required(response.content).payment


async def sign_challenge(signer: PaymentSigner, challenge: Challenge) -> PaymentProof:
    """Run a sync or async signer and bind the proof to the challenge."""
    proof = signer.sign(challenge)
    if inspect.isawaitable(proof):
        proof = await proof
    if proof.challenge is None:
        proof = proof.model_copy(update={"challenge": challenge})
    return proof


def check_challenge(
    challenge: Challenge,
    max_amount: int | None = None,
    at_ms: int | None = None,
) -> None:
    """Client-side checks before paying.

    Raises:
        ExpiredChallengeError: If the deadline has passed locally.
        PaymentAmountExceededError: If the amount exceeds ``max_amount``.
    """
    if challenge.is_expired(at_ms):
        raise ExpiredChallengeError("Payment challenge has expired")
    if max_amount is not None and challenge.amount_int > max_amount:
        raise PaymentAmountExceededError(
            f"Payment amount {challenge.amount} exceeds maximum allowed value {max_amount}"
        )


def ensure_balance(balance: int, challenge: Challenge) -> None:
    """Raise InsufficientBalanceError if ``balance`` cannot cover ``challenge``."""
    if balance < challenge.amount_int:
        raise InsufficientBalanceError(
            f"Balance {balance} of {challenge.token} is below the required {challenge.amount}"
        )


async def check_balance(ledger: LedgerClient, address: str, challenge: Challenge) -> None:
    """Read the payer balance from ``ledger`` and check it covers ``challenge``."""
    ensure_balance(await ledger.get_balance(address, challenge.token), challenge)


def rejection_error(response: Any, content: bytes) -> PaymentRejectedError:
    """Build the error for a 402 answer to a paid retry."""
    try:
        body = parse_payment_required(content)
    except MalformedChallengeError:
        return PaymentRejectedError("Payment rejected by server", response=response)
    return PaymentRejectedError(
        body.message or "Payment rejected by server",
        code=body.error,
        response=response,
    )


class x402AptosClient:
    """Async HTTP client that pays 402 challenges.

    Example:
        ```python
        signer = LocalEd25519Signer.generate()
        async with x402AptosClient(signer) as client:
            response = await client.fetch_with_payment("https://api.example.com/weather")
        ```
    """

    def __init__(
        self,
        signer: PaymentSigner,
        http_client: httpx.AsyncClient | None = None,
        max_amount: int | None = None,
        clock: Callable[[], int] = now_ms,
        ledger: LedgerClient | None = None,
    ) -> None:
        """Create x402AptosClient.

        Args:
            signer: Produces proofs for challenges.
            http_client: Optional httpx.AsyncClient to send requests with.
            max_amount: Default ceiling on a single payment, minor units.
            clock: Epoch-milliseconds clock for expiry checks.
            ledger: When set, the signer's balance is checked before signing.
        """
        self._signer = signer
        self._http_client = http_client
        self._owns_client = http_client is None
        self._max_amount = max_amount
        self._clock = clock
        self._ledger = ledger

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
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

    async def _send(
        self,
        url: str,
        options: RequestOptions,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers = dict(options.headers)
        if extra_headers:
            headers.update(extra_headers)
        kwargs: dict[str, Any] = {"headers": headers}
        if options.json is not None:
            kwargs["json"] = options.json
        if options.content is not None:
            kwargs["content"] = options.content
        if options.params is not None:
            kwargs["params"] = options.params
        if options.timeout is not None:
            kwargs["timeout"] = options.timeout
        return await self._get_client().request(options.method, url, **kwargs)

    async def fetch_with_payment(
        self,
        url: str,
        options: RequestOptions | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Fetch ``url``, paying once if the server asks for it.

        Args:
            url: Resource URL.
            options: Request options; keyword arguments build one if omitted.

        Returns:
            The first non-402 response, or the response to the paid retry.

        Raises:
            MalformedChallengeError: If the 402 body is unusable.
            ExpiredChallengeError: If the challenge already expired.
            PaymentAmountExceededError: If the price exceeds the allowed maximum.
            InsufficientBalanceError: If a ledger is set and the signer cannot pay.
            PaymentRejectedError: If the paid retry is answered with 402 again.
        """
        if options is not None and kwargs:
            raise TypeError("pass either options or request keyword arguments, not both")
        options = options or RequestOptions(**kwargs)

        response = await self._send(url, options)
        if response.status_code != PAYMENT_REQUIRED_STATUS:
            return response

        challenge = parse_challenge(response)
        max_amount = options.max_amount if options.max_amount is not None else self._max_amount
        check_challenge(challenge, max_amount, self._clock())
        if self._ledger is not None:
            await check_balance(self._ledger, self._signer.address, challenge)

        proof = await sign_challenge(self._signer, challenge)
        logger.info(
            "Paying %s %s to %s for %s", challenge.amount, challenge.token, challenge.recipient, url
        )

        retry = await self._send(url, options, {PAYMENT_HEADER: encode_payment_header(proof)})
        if retry.status_code == PAYMENT_REQUIRED_STATUS:
            raise rejection_error(retry, retry.content)
        return retry


async def fetch_with_payment(
    url: str,
    options: RequestOptions | None = None,
    signer: PaymentSigner | None = None,
    http_client: httpx.AsyncClient | None = None,
    ledger: LedgerClient | None = None,
) -> httpx.Response:
    """One-shot form of ``x402AptosClient.fetch_with_payment``."""
    if signer is None:
        raise ValueError("fetch_with_payment requires a signer")
    async with x402AptosClient(signer, http_client=http_client, ledger=ledger) as client:
        return await client.fetch_with_payment(url, options)
