"""Wire models and error types for the x402 Aptos protocol."""

from .base import (
    DEFAULT_ASSET,
    DEFAULT_CHALLENGE_WINDOW_SECONDS,
    DEFAULT_DECIMALS,
    X402_VERSION,
    BaseX402Model,
    now_ms,
    parse_minor_units,
)
from .errors import (
    ErrorCode,
    ExpiredChallengeError,
    FacilitatorError,
    InsufficientBalanceError,
    MalformedChallengeError,
    MalformedProofError,
    PaymentAmountExceededError,
    PaymentError,
    PaymentRejectedError,
    RouteConfigurationError,
)
from .payments import (
    AssetSpec,
    Challenge,
    PaymentProof,
    PaymentRequiredResponse,
    PriceSpec,
    SettlementReceipt,
    ValidationOutcome,
    VerificationResult,
)

__all__ = [
    # Base
    "X402_VERSION",
    "DEFAULT_ASSET",
    "DEFAULT_DECIMALS",
    "DEFAULT_CHALLENGE_WINDOW_SECONDS",
    "BaseX402Model",
    "now_ms",
    "parse_minor_units",
    # Payments
    "AssetSpec",
    "PriceSpec",
    "Challenge",
    "PaymentRequiredResponse",
    "PaymentProof",
    "VerificationResult",
    "SettlementReceipt",
    "ValidationOutcome",
    # Errors
    "ErrorCode",
    "PaymentError",
    "MalformedChallengeError",
    "MalformedProofError",
    "ExpiredChallengeError",
    "PaymentAmountExceededError",
    "InsufficientBalanceError",
    "PaymentRejectedError",
    "FacilitatorError",
    "RouteConfigurationError",
]
