"""FastAPI integration for x402 Aptos payments."""

from .middleware import PaymentMiddleware, require_payment

__all__ = ["PaymentMiddleware", "require_payment"]
