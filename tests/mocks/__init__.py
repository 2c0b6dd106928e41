"""Shared test doubles and builders."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from x402_aptos.mechanisms.aptos import APTOS_COIN, Confirmation, ConfirmationStatus
from x402_aptos.schemas import Challenge, PaymentRequiredResponse, now_ms

PAY_TO = "0x" + "a1" * 32
OTHER_ADDRESS = "0x" + "b2" * 32


def make_challenge(
    amount: str = "1000000",
    recipient: str = PAY_TO,
    token: str = APTOS_COIN,
    deadline_offset_ms: int = 300_000,
    nonce: str | None = "test-nonce-0123456789abcdef",
) -> Challenge:
    """Helper to create a Challenge relative to now."""
    return Challenge(
        amount=amount,
        token=token,
        recipient=recipient,
        deadline=now_ms() + deadline_offset_ms,
        nonce=nonce,
        decimals=8,
    )


def payment_required_body(challenge: Challenge | None = None, **kwargs: Any) -> bytes:
    """Helper to create a 402 response body."""
    body = PaymentRequiredResponse(
        payment=challenge or make_challenge(),
        message=kwargs.pop("message", "Payment required to access /weather"),
        retry_after=5,
        **kwargs,
    )
    return json.dumps(body.model_dump(by_alias=True, exclude_none=True, mode="json")).encode()


class FakeLedger:
    """In-memory LedgerClient recording every call."""

    def __init__(
        self,
        balance: int = 10**12,
        submit_delay: float = 0.0,
        confirmation: Confirmation | None = None,
        confirmation_delay: float = 0.0,
        submit_error: Exception | None = None,
    ):
        self.balance = balance
        self.submit_delay = submit_delay
        self.confirmation = confirmation or Confirmation(
            ConfirmationStatus.CONFIRMED, "Executed successfully"
        )
        self.confirmation_delay = confirmation_delay
        self.submit_error = submit_error
        self.submitted: list[Any] = []
        self.balance_calls: list[tuple[str, str]] = []

    async def submit(self, transaction):
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(transaction)
        return "0x" + f"{len(self.submitted):064x}"

    async def await_confirmation(self, tx_hash, timeout):
        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)
        return self.confirmation

    async def get_balance(self, address, asset):
        self.balance_calls.append((address, asset))
        return self.balance

    async def get_transaction(self, tx_hash):
        for index in range(len(self.submitted)):
            if tx_hash == "0x" + f"{index + 1:064x}":
                return {"hash": tx_hash, "type": "user_transaction", "success": True}
        return None
