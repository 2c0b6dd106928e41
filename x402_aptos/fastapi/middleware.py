"""FastAPI / Starlette binding for PaymentGateway."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from ..http.constants import PAYMENT_RESPONSE_HEADER
from ..http.utils import encode_receipt_header
from ..interfaces import LedgerVerifier
from ..routes import RouteTable
from ..server import (
    RESULT_NO_PAYMENT_REQUIRED,
    RESULT_PAYMENT_VERIFIED,
    GatewayConfig,
    GatewayDecision,
    PaymentGateway,
)

CallNext = Callable[[Request], Awaitable[Response]]


async def _dispatch(gateway: PaymentGateway, request: Request, call_next: CallNext) -> Response:
    decision: GatewayDecision = await gateway.process(
        request.method, request.url.path, request.headers
    )

    if decision.type == RESULT_NO_PAYMENT_REQUIRED:
        return await call_next(request)

    if decision.type != RESULT_PAYMENT_VERIFIED or decision.receipt is None:
        response = decision.response
        return JSONResponse(
            status_code=response.status,
            content=response.body,
            headers=response.headers,
        )

    request.state.payment = decision.receipt
    request.state.transaction_id = decision.receipt.transaction_id

    response = await call_next(request)
    response.headers[PAYMENT_RESPONSE_HEADER] = encode_receipt_header(decision.receipt)
    return response


class PaymentMiddleware(BaseHTTPMiddleware):
    """Gates priced routes of an ASGI app behind x402 payments.

    Example:
        ```python
        app.add_middleware(
            PaymentMiddleware,
            config=GatewayConfig(routes=routes, pay_to=pay_to, verifier=verifier),
        )
        ```

    Admitted handlers find the SettlementReceipt on ``request.state.payment``.
    """

    def __init__(
        self,
        app: ASGIApp,
        config: GatewayConfig | None = None,
        gateway: PaymentGateway | None = None,
    ) -> None:
        super().__init__(app)
        if gateway is None:
            if config is None:
                raise ValueError("PaymentMiddleware requires a config or a gateway")
            gateway = PaymentGateway(config)
        self.gateway = gateway

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        return await _dispatch(self.gateway, request, call_next)


def require_payment(
    routes: RouteTable | Mapping[str, Any],
    pay_to: str,
    verifier: LedgerVerifier,
    **options: Any,
) -> Callable[[Request, CallNext], Awaitable[Response]]:
    """Generate a FastAPI http middleware function that gates payments.

    Args:
        routes: Priced routes (RouteTable or pattern -> price mapping).
        pay_to: Address that receives payments.
        verifier: LedgerVerifier settling proofs.
        **options: Further GatewayConfig fields (window_seconds, ...).

    Returns:
        Middleware for ``app.middleware("http")``.
    """
    gateway = PaymentGateway(
        GatewayConfig(routes=routes, pay_to=pay_to, verifier=verifier, **options)
    )

    async def middleware(request: Request, call_next: CallNext) -> Response:
        return await _dispatch(gateway, request, call_next)

    return middleware
