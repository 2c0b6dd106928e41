"""PaymentGateway - framework-agnostic payment policy for HTTP requests.

Framework middleware calls ``process`` for every request and acts on
the returned decision:

- no-payment-required: pass the request through
- payment-verified: attach the receipt and call the handler
- payment-error: send the prepared 402 (or 500) response
"""

from __future__ import annotations

import heapq
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from .challenge import ChallengeIssuer
from .http.constants import (
    DEFAULT_RETRY_AFTER_SECONDS,
    INTERNAL_ERROR_MESSAGE,
    PAYMENT_HEADER,
    PAYMENT_REJECTED_MESSAGE,
    PAYMENT_REQUIRED_MESSAGE,
    PAYMENT_REQUIRED_STATUS,
)
from .http.utils import decode_payment_header, get_header
from .interfaces import LedgerVerifier
from .routes import RouteTable
from .schemas import (
    DEFAULT_CHALLENGE_WINDOW_SECONDS,
    Challenge,
    ErrorCode,
    MalformedProofError,
    PaymentRequiredResponse,
    PriceSpec,
    SettlementReceipt,
    now_ms,
)
from .validation import ProofValidator

logger = logging.getLogger(__name__)

RESULT_NO_PAYMENT_REQUIRED = "no-payment-required"
RESULT_PAYMENT_VERIFIED = "payment-verified"
RESULT_PAYMENT_ERROR = "payment-error"


# ============================================================================
# Configuration and results
# ============================================================================


@dataclass
class GatewayConfig:
    """Everything one PaymentGateway instance needs.

    Attributes:
        routes: Priced routes. A dict is converted with RouteTable.from_config.
        pay_to: Address that receives payments.
        verifier: Simulated, live, or remote LedgerVerifier.
        window_seconds: Challenge validity window.
        retry_after: Seconds advertised in 402 bodies.
        single_use_proofs: Admit each transaction id once. On by default; turning
            it off lets one payment unlock the route until the proof expires.
        clock: Epoch-milliseconds clock.
    """

    routes: RouteTable | Mapping[str, Any]
    pay_to: str
    verifier: LedgerVerifier
    window_seconds: int = DEFAULT_CHALLENGE_WINDOW_SECONDS
    retry_after: int = DEFAULT_RETRY_AFTER_SECONDS
    single_use_proofs: bool = True
    clock: Callable[[], int] = field(default=now_ms)


@dataclass
class GatewayResponse:
    """Response the middleware should send instead of calling the handler."""

    status: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class GatewayDecision:
    """What to do with one request."""

    type: Literal["no-payment-required", "payment-verified", "payment-error"]
    response: GatewayResponse | None = None
    receipt: SettlementReceipt | None = None
    price: PriceSpec | None = None


# ============================================================================
# PaymentGateway
# ============================================================================


class PaymentGateway:
    """Applies payment policy to requests.

    Example:
        ```python
        gateway = PaymentGateway(GatewayConfig(
            routes={"GET /weather": "1000000"},
            pay_to="0xabc...",
            verifier=SimulatedLedgerVerifier(pay_to="0xabc..."),
        ))
        decision = await gateway.process("GET", "/weather", headers)
        ```
    """

    def __init__(
        self,
        config: GatewayConfig,
        issuer: ChallengeIssuer | None = None,
        validator: ProofValidator | None = None,
    ) -> None:
        routes = config.routes
        if not isinstance(routes, RouteTable):
            routes = RouteTable.from_config(routes)

        self._routes = routes
        self._config = config
        self._verifier = config.verifier
        self._issuer = issuer or ChallengeIssuer(
            config.pay_to, window_seconds=config.window_seconds, clock=config.clock
        )
        self._validator = validator or ProofValidator(
            pay_to=config.pay_to, window_seconds=config.window_seconds, clock=config.clock
        )
        self._used_lock = threading.Lock()
        self._used_transactions: dict[str, int] = {}
        self._used_expiry: list[tuple[int, str]] = []

    @property
    def routes(self) -> RouteTable:
        return self._routes

    def requires_payment(self, method: str, path: str) -> bool:
        return self._routes.match(method, path) is not None

    def admitted_count(self) -> int:
        """Transaction ids currently held by the replay guard."""
        with self._used_lock:
            return len(self._used_transactions)

    async def process(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
    ) -> GatewayDecision:
        """Decide what to do with a request.

        Never raises. Unexpected errors become a 500 decision with a
        generic message; the detail is logged.

        Args:
            method: HTTP method.
            path: Request path (query string allowed).
            headers: Request headers.

        Returns:
            GatewayDecision.
        """
        try:
            return await self._process(method, path, headers)
        except Exception:
            logger.exception("Payment processing failed for %s %s", method, path)
            return self._internal_error()

    async def _process(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
    ) -> GatewayDecision:
        spec = self._routes.match(method, path)
        if spec is None:
            return GatewayDecision(type=RESULT_NO_PAYMENT_REQUIRED)

        header = get_header(headers, PAYMENT_HEADER)
        if not header:
            return self._payment_required(spec, f"{PAYMENT_REQUIRED_MESSAGE} to access {path}")

        try:
            proof = decode_payment_header(header)
        except MalformedProofError as e:
            return self._rejected(spec, ErrorCode.MALFORMED_PROOF, e.message)

        outcome = self._validator.validate(proof, spec)
        if not outcome.ok:
            logger.warning("Rejected payment for %s %s: %s", method, path, outcome.reason)
            return self._rejected(spec, outcome.code, outcome.reason)

        result = await self._verifier.verify(proof, spec)
        if not result.is_valid:
            if result.error_code is None or result.error_code == ErrorCode.INTERNAL_ERROR:
                logger.error(
                    "Verifier reported an internal error for %s %s: %s", method, path, result.error
                )
                return self._internal_error()
            logger.warning("Payment for %s %s not settled: %s", method, path, result.error)
            return self._rejected(spec, result.error_code, result.error or "verification failed")

        receipt = SettlementReceipt.from_result(result)
        expires_at = self._validator.replay_deadline(proof, outcome.details)
        if self._config.single_use_proofs and not self._consume(receipt.transaction_id, expires_at):
            return self._rejected(spec, ErrorCode.SUBMISSION_FAILED, "payment already used")

        logger.info(
            "Payment %s admitted %s %s (payer %s)",
            receipt.transaction_id,
            method,
            path,
            receipt.payer,
        )
        return GatewayDecision(type=RESULT_PAYMENT_VERIFIED, receipt=receipt, price=spec)

    def _consume(self, transaction_id: str, expires_at: int) -> bool:
        """Mark ``transaction_id`` admitted. False if it already was."""
        with self._used_lock:
            now = self._config.clock()
            while self._used_expiry and self._used_expiry[0][0] <= now:
                expired_at, expired_id = heapq.heappop(self._used_expiry)
                if self._used_transactions.get(expired_id) == expired_at:
                    del self._used_transactions[expired_id]
            if transaction_id in self._used_transactions:
                return False
            self._used_transactions[transaction_id] = expires_at
            heapq.heappush(self._used_expiry, (expires_at, transaction_id))
            return True

    # =========================================================================
    # Responses
    # =========================================================================

    def _issue_challenge(self, spec: PriceSpec) -> Challenge:
        try:
            return self._issuer.issue(spec)
        except Exception:
            logger.exception("Challenge issuance failed for %s", spec.pattern)
            # Still answer 402: a challenge without a nonce.
            return Challenge.model_construct(
                amount=spec.amount,
                token=spec.asset.address,
                decimals=spec.asset.decimals,
                recipient=self._config.pay_to,
                deadline=self._config.clock() + self._config.window_seconds * 1000,
                nonce=None,
            )

    def _challenge_response(
        self,
        spec: PriceSpec,
        message: str,
        code: ErrorCode | None = None,
    ) -> GatewayDecision:
        body = PaymentRequiredResponse(
            payment=self._issue_challenge(spec),
            message=message,
            retry_after=self._config.retry_after,
            error=code,
        )
        return GatewayDecision(
            type=RESULT_PAYMENT_ERROR,
            price=spec,
            response=GatewayResponse(
                status=PAYMENT_REQUIRED_STATUS,
                body=body.model_dump(by_alias=True, exclude_none=True, mode="json"),
                headers={"Retry-After": str(self._config.retry_after)},
            ),
        )

    def _payment_required(self, spec: PriceSpec, message: str) -> GatewayDecision:
        return self._challenge_response(spec, message)

    def _rejected(self, spec: PriceSpec, code: ErrorCode, reason: str) -> GatewayDecision:
        return self._challenge_response(spec, f"{PAYMENT_REJECTED_MESSAGE}: {reason}", code)

    @staticmethod
    def _internal_error() -> GatewayDecision:
        return GatewayDecision(
            type=RESULT_PAYMENT_ERROR,
            response=GatewayResponse(status=500, body={"error": INTERNAL_ERROR_MESSAGE}),
        )
