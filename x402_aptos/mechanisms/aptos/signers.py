"""Concrete Aptos signer implementations."""

from __future__ import annotations

import json

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from ...schemas import Challenge, PaymentProof, now_ms
from .constants import (
    DEFAULT_GAS_UNIT_PRICE,
    DEFAULT_MAX_GAS_AMOUNT,
    ED25519_SIGNATURE,
    PRIVATE_KEY_LEN,
)
from .transaction import (
    build_transfer_transaction,
    decode_hex,
    derive_address,
    signing_message,
)


class LocalEd25519Signer:
    """Client-side signer holding an Ed25519 private key in memory.

    Builds a ``0x1::coin::transfer`` for each challenge, signs it, and
    returns the proof ready for the X-Payment header. Intended for
    development and tests; production clients plug in a wallet.

    Example:
        ```python
        signer = LocalEd25519Signer.generate()
        proof = signer.sign(challenge)
        ```
    """

    def __init__(
        self,
        private_key: str | bytes,
        sequence_number: int = 0,
        chain_id: int | None = None,
        max_gas_amount: int = DEFAULT_MAX_GAS_AMOUNT,
        gas_unit_price: int = DEFAULT_GAS_UNIT_PRICE,
    ):
        """Create LocalEd25519Signer.

        Args:
            private_key: 32-byte seed, raw or hex encoded.
            sequence_number: Next account sequence number to use.
            chain_id: Optional chain id stamped into transactions.
            max_gas_amount: Gas limit per transfer.
            gas_unit_price: Gas price per unit.
        """
        seed = private_key if isinstance(private_key, bytes) else decode_hex(private_key)
        if len(seed) != PRIVATE_KEY_LEN:
            raise ValueError(f"Ed25519 private key must be {PRIVATE_KEY_LEN} bytes")
        self._key = Ed25519PrivateKey.from_private_bytes(seed)
        self._public_key = self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self._address = derive_address(self._public_key)
        self._sequence_number = sequence_number
        self._chain_id = chain_id
        self._max_gas_amount = max_gas_amount
        self._gas_unit_price = gas_unit_price

    @classmethod
    def generate(cls, **kwargs) -> LocalEd25519Signer:
        """Create a signer with a fresh random key."""
        seed = Ed25519PrivateKey.generate().private_bytes(
            Encoding.Raw, PrivateFormat.Raw, NoEncryption()
        )
        return cls(seed, **kwargs)

    @property
    def address(self) -> str:
        """Account address derived from the public key."""
        return self._address

    @property
    def public_key(self) -> str:
        """Hex encoded public key."""
        return "0x" + self._public_key.hex()

    def sign_message(self, message: bytes) -> str:
        return "0x" + self._key.sign(message).hex()

    def sign(self, challenge: Challenge) -> PaymentProof:
        """Sign a transfer answering the challenge.

        The transaction expires at the challenge deadline and the proof
        echoes the challenge.

        Args:
            challenge: Challenge from a 402 response.

        Returns:
            PaymentProof for the X-Payment header.
        """
        tx = build_transfer_transaction(
            sender=self._address,
            recipient=challenge.recipient,
            amount=challenge.amount,
            asset=challenge.token,
            expiration_timestamp_secs=challenge.deadline // 1000,
            sequence_number=self._sequence_number,
            chain_id=self._chain_id,
            max_gas_amount=self._max_gas_amount,
            gas_unit_price=self._gas_unit_price,
        )
        self._sequence_number += 1

        signature = self.sign_message(signing_message(tx))
        tx["signature"] = {
            "type": ED25519_SIGNATURE,
            "public_key": self.public_key,
            "signature": signature,
        }

        return PaymentProof(
            transaction=json.dumps(tx),
            signature=signature,
            public_key=self.public_key,
            address=self._address,
            timestamp=now_ms(),
            challenge=challenge,
        )
