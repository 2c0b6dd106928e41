"""Capability interfaces the payment components depend on."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Any, Protocol, Union

from .schemas import Challenge, PaymentProof, PriceSpec, VerificationResult

Requirement = Union[Challenge, PriceSpec, None]


class PaymentSigner(Protocol):
    """Turns a challenge into a signed payment proof (wallet or key holder).

    Implementations may be sync or async. ``address`` is the paying account.
    """

    address: str

    def sign(self, challenge: Challenge) -> PaymentProof | Awaitable[PaymentProof]:
        """Sign a transfer answering ``challenge``."""
        ...


class LedgerClient(Protocol):
    """Ledger transport used by the live verifier."""

    async def submit(self, transaction: str | dict[str, Any]) -> str:
        """Submit a signed transaction and return its ledger id."""
        ...

    async def await_confirmation(self, tx_hash: str, timeout: float) -> Any:
        """Wait up to ``timeout`` seconds for the transaction to commit."""
        ...

    async def get_balance(self, address: str, asset: str) -> int:
        """Balance of ``asset`` at ``address`` in minor units."""
        ...

    async def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        """Transaction details, or None if unknown."""
        ...


class LedgerVerifier(Protocol):
    """Verifies proofs against the ledger, in process or over RPC.

    Note: verify returns a VerificationResult with is_valid=False on
    failure rather than raising.
    """

    async def verify(
        self,
        proof: PaymentProof,
        requirement: Requirement = None,
    ) -> VerificationResult:
        """Verify (and settle) a payment proof."""
        ...
