"""Payment protocol models: prices, challenges, proofs and results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ConfigDict, Field, field_validator

from .base import (
    DEFAULT_ASSET,
    DEFAULT_DECIMALS,
    BaseX402Model,
    now_ms,
    parse_minor_units,
)
from .errors import ErrorCode


class AssetSpec(BaseX402Model):
    """Ledger-native asset identifier and its decimal count."""

    address: str = DEFAULT_ASSET
    decimals: int = DEFAULT_DECIMALS

    model_config = ConfigDict(frozen=True)

    @field_validator("address")
    def validate_address(cls, v):
        if not v or not v.strip():
            raise ValueError("asset address must not be empty")
        return v.strip()

    @field_validator("decimals")
    def validate_decimals(cls, v):
        if v < 0 or v > 255:
            raise ValueError("decimals must be between 0 and 255")
        return v


class PriceSpec(BaseX402Model):
    """A protected route and what it costs."""

    pattern: str
    amount: str
    asset: AssetSpec = Field(default_factory=AssetSpec)
    description: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("amount")
    def validate_amount(cls, v):
        parse_minor_units(v)
        return v.strip()

    @property
    def amount_int(self) -> int:
        return int(self.amount)


class Challenge(BaseX402Model):
    """Server-issued description of the payment that unlocks a route.

    ``deadline`` is absolute epoch milliseconds. ``token`` is the asset
    identifier, named as it appears on the wire.
    """

    amount: str
    token: str
    recipient: str
    deadline: int
    nonce: Optional[str] = None
    decimals: Optional[int] = None

    @field_validator("amount")
    def validate_amount(cls, v):
        parse_minor_units(v)
        return v.strip()

    @field_validator("recipient", "token")
    def validate_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

    @property
    def amount_int(self) -> int:
        return int(self.amount)

    @property
    def asset(self) -> AssetSpec:
        return AssetSpec(
            address=self.token,
            decimals=self.decimals if self.decimals is not None else DEFAULT_DECIMALS,
        )

    def is_expired(self, at_ms: int | None = None) -> bool:
        """Whether the deadline has passed at ``at_ms`` (defaults to now)."""
        current = now_ms() if at_ms is None else at_ms
        return self.deadline <= current


# Returned by a server as json alongside a 402 response code
class PaymentRequiredResponse(BaseX402Model):
    payment: Challenge
    message: Optional[str] = None
    retry_after: Optional[int] = None
    error: Optional[ErrorCode] = None


class PaymentProof(BaseX402Model):
    """Client-submitted evidence of payment, carried in the X-Payment header.

    ``transaction`` is the signed transfer as a JSON document. ``challenge``
    echoes the challenge the client answered, when it has one.
    """

    transaction: str
    signature: str
    public_key: str
    address: str
    timestamp: int
    challenge: Optional[Challenge] = None

    @field_validator("transaction", "signature", "public_key", "address")
    def validate_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

    def to_header(self) -> str:
        """Encode as the X-Payment header value (compact JSON)."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class VerificationResult(BaseX402Model):
    """Outcome of one proof verification attempt."""

    is_valid: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    verified_at: int = Field(default_factory=now_ms)
    payer: Optional[str] = None

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        reason: str,
        payer: str | None = None,
    ) -> VerificationResult:
        return cls(is_valid=False, error=reason, error_code=code, payer=payer)


class SettlementReceipt(BaseX402Model):
    """What a protected handler learns about the payment that admitted it."""

    transaction_id: str
    verified_at: int
    payer: Optional[str] = None

    @classmethod
    def from_result(cls, result: VerificationResult) -> SettlementReceipt:
        if not result.is_valid or not result.transaction_id:
            raise ValueError("receipt requires a successful verification result")
        return cls(
            transaction_id=result.transaction_id,
            verified_at=result.verified_at,
            payer=result.payer,
        )


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of static proof validation: ok, or a coded reason."""

    ok: bool
    code: ErrorCode | None = None
    reason: str | None = None
    details: Any = None

    @classmethod
    def success(cls, details: Any = None) -> ValidationOutcome:
        return cls(ok=True, details=details)

    @classmethod
    def failure(cls, code: ErrorCode, reason: str) -> ValidationOutcome:
        return cls(ok=False, code=code, reason=reason)
