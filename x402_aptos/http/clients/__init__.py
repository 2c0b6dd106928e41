"""HTTP client wrappers that pay 402 challenges."""

from .httpx import RequestOptions, fetch_with_payment, x402AptosClient
from .requests import PaymentHTTPAdapter, wrap_requests_with_payment

__all__ = [
    # httpx
    "x402AptosClient",
    "RequestOptions",
    "fetch_with_payment",
    # requests
    "PaymentHTTPAdapter",
    "wrap_requests_with_payment",
]
