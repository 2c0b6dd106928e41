"""Challenge issuance for priced routes."""

from __future__ import annotations

import secrets
from collections.abc import Callable

from .schemas import DEFAULT_CHALLENGE_WINDOW_SECONDS, Challenge, PriceSpec, now_ms

MIN_NONCE_BYTES = 16
DEFAULT_NONCE_BYTES = 24


def generate_nonce(num_bytes: int = DEFAULT_NONCE_BYTES) -> str:
    """Random URL-safe token carrying ``num_bytes`` bytes of entropy."""
    if num_bytes < MIN_NONCE_BYTES:
        raise ValueError(f"nonce needs at least {MIN_NONCE_BYTES} bytes of entropy")
    return secrets.token_urlsafe(num_bytes)


class ChallengeIssuer:
    """Issues challenges for a single payment address.

    Issuance is local: it neither records challenges nor touches the
    ledger, so it never blocks.
    """

    def __init__(
        self,
        pay_to: str,
        window_seconds: int = DEFAULT_CHALLENGE_WINDOW_SECONDS,
        clock: Callable[[], int] = now_ms,
        nonce_bytes: int = DEFAULT_NONCE_BYTES,
    ) -> None:
        """Create ChallengeIssuer.

        Args:
            pay_to: Address that receives payments.
            window_seconds: How long a challenge stays valid.
            clock: Epoch-milliseconds clock, injectable for tests.
            nonce_bytes: Entropy per nonce.
        """
        if not pay_to or not pay_to.strip():
            raise ValueError("pay_to address is required")
        if window_seconds <= 0:
            raise ValueError("challenge window must be positive")
        if nonce_bytes < MIN_NONCE_BYTES:
            raise ValueError(f"nonce needs at least {MIN_NONCE_BYTES} bytes of entropy")
        self._pay_to = pay_to.strip()
        self._window_ms = window_seconds * 1000
        self._clock = clock
        self._nonce_bytes = nonce_bytes

    @property
    def pay_to(self) -> str:
        return self._pay_to

    @property
    def window_seconds(self) -> int:
        return self._window_ms // 1000

    def issue(self, spec: PriceSpec) -> Challenge:
        """Issue a fresh challenge for ``spec``."""
        issued_at = self._clock()
        return Challenge(
            amount=spec.amount,
            token=spec.asset.address,
            decimals=spec.asset.decimals,
            recipient=self._pay_to,
            deadline=issued_at + self._window_ms,
            nonce=generate_nonce(self._nonce_bytes),
        )
