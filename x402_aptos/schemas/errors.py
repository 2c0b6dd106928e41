"""Error taxonomy for the x402 Aptos payment protocol.

Every failure the protocol can report has an ``ErrorCode``. Server-side
components pass codes around as values; client-side helpers raise the
``PaymentError`` hierarchy.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Reasons a payment is not (yet) valid."""

    MALFORMED_CHALLENGE = "malformed_challenge"
    MALFORMED_PROOF = "malformed_proof"
    EXPIRED_CHALLENGE = "expired_challenge"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    WRONG_RECIPIENT = "wrong_recipient"
    SIGNATURE_REJECTED = "signature_rejected"
    SUBMISSION_FAILED = "submission_failed"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    INTERNAL_ERROR = "internal_error"

    @property
    def is_payment_failure(self) -> bool:
        """True for codes answered with a 402 rather than a 5xx."""
        return self is not ErrorCode.INTERNAL_ERROR


class PaymentError(Exception):
    """Base class for payment-related errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class MalformedChallengeError(PaymentError):
    """Raised when a 402 response does not carry a usable challenge."""

    code = ErrorCode.MALFORMED_CHALLENGE


class MalformedProofError(PaymentError):
    """Raised when a payment proof cannot be parsed."""

    code = ErrorCode.MALFORMED_PROOF


class ExpiredChallengeError(PaymentError):
    """Raised when a challenge deadline has already passed."""

    code = ErrorCode.EXPIRED_CHALLENGE


class PaymentAmountExceededError(PaymentError):
    """Raised when a challenge asks for more than the client allows."""

    code = ErrorCode.INSUFFICIENT_AMOUNT


class InsufficientBalanceError(PaymentError):
    """Raised when the paying account cannot cover a challenge."""

    code = ErrorCode.INSUFFICIENT_AMOUNT


class PaymentRejectedError(PaymentError):
    """Raised when the server answers a paid retry with another 402."""

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        response: Any = None,
    ) -> None:
        super().__init__(message, code or ErrorCode.SUBMISSION_FAILED)
        self.response = response


class FacilitatorError(PaymentError):
    """Raised when a remote facilitator cannot be reached or misbehaves."""

    code = ErrorCode.INTERNAL_ERROR


class RouteConfigurationError(ValueError):
    """Raised at startup when the route table is unsafe to serve."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("Invalid route configuration:\n  " + "\n  ".join(errors))
