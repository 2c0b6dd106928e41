"""Transfer transaction decoding and the proof signing scheme.

A proof's ``transaction`` is a JSON document in the fullnode's REST
submission format. The proof signature is an Ed25519 signature over
``PROOF_SIGNING_DOMAIN + canonical_json(transaction)``, where the
transaction's own ``signature`` (authenticator) member is excluded and
``canonical_json`` sorts keys and drops insignificant whitespace.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .constants import (
    ACCOUNT_TRANSFER_FUNCTION,
    ADDRESS_HEX_LEN,
    APTOS_COIN,
    DEFAULT_GAS_UNIT_PRICE,
    DEFAULT_MAX_GAS_AMOUNT,
    ED25519_SCHEME,
    ENTRY_FUNCTION_PAYLOAD,
    PROOF_SIGNING_DOMAIN,
    PUBLIC_KEY_LEN,
    SIGNATURE_LEN,
    TRANSFER_FUNCTIONS,
)


@dataclass(frozen=True)
class TransferTransaction:
    """The parts of a signed transfer the protocol cares about."""

    sender: str
    recipient: str
    amount: int
    asset: str
    expiration_timestamp_secs: int | None = None
    authenticator_public_key: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


# ============================================================================
# Encoding helpers
# ============================================================================


def decode_hex(value: str, expected_len: int | None = None) -> bytes:
    """Decode a hex string with optional 0x prefix.

    Raises:
        ValueError: If the value is not hex or has the wrong byte length.
    """
    if not isinstance(value, str):
        raise ValueError("expected a hex string")
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    try:
        raw = bytes.fromhex(text)
    except ValueError as e:
        raise ValueError(f"invalid hex encoding: {e}") from e
    if expected_len is not None and len(raw) != expected_len:
        raise ValueError(f"expected {expected_len} bytes, got {len(raw)}")
    return raw


def normalize_address(address: str) -> str:
    """Return the long form of an account address ("0x" + 64 hex chars).

    Short special addresses such as "0x1" are left-padded.
    """
    if not isinstance(address, str):
        raise ValueError("address must be a string")
    text = address.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if not text or len(text) > ADDRESS_HEX_LEN:
        raise ValueError(f"invalid account address: {address!r}")
    try:
        int(text, 16)
    except ValueError:
        raise ValueError(f"invalid account address: {address!r}") from None
    return "0x" + text.rjust(ADDRESS_HEX_LEN, "0")


def addresses_equal(a: str, b: str) -> bool:
    try:
        return normalize_address(a) == normalize_address(b)
    except ValueError:
        return a.strip().lower() == b.strip().lower()


def normalize_asset(asset: str) -> str:
    """Normalize the address part of a Move type tag ("0x01::m::T" == "0x1::m::T")."""
    parts = asset.strip().split("::", 1)
    if len(parts) == 2:
        try:
            return f"{normalize_address(parts[0])}::{parts[1]}"
        except ValueError:
            pass
    return asset.strip()


def canonical_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


# ============================================================================
# Decoding
# ============================================================================


def parse_transaction(blob: str | dict[str, Any]) -> dict[str, Any]:
    """Parse the opaque transaction blob into a dict.

    Raises:
        ValueError: If the blob is not a JSON object.
    """
    if isinstance(blob, dict):
        return blob
    try:
        tx = json.loads(blob)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"transaction is not valid JSON: {e}") from e
    if not isinstance(tx, dict):
        raise ValueError("transaction must be a JSON object")
    return tx


def _parse_amount(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("transfer amount must be an integer")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise ValueError(f"transfer amount must be a non-negative integer, got {value!r}")
    if amount < 0:
        raise ValueError("transfer amount must not be negative")
    return amount


def decode_transfer(blob: str | dict[str, Any]) -> TransferTransaction:
    """Decode a coin transfer from a transaction blob.

    Args:
        blob: JSON transaction (string or already-parsed dict).

    Returns:
        TransferTransaction with normalized sender and recipient.

    Raises:
        ValueError: If the blob is not a recognised transfer.
    """
    tx = parse_transaction(blob)

    sender = tx.get("sender")
    if not isinstance(sender, str):
        raise ValueError("transaction has no sender")

    payload = tx.get("payload")
    if not isinstance(payload, dict):
        raise ValueError("transaction has no payload")
    if payload.get("type", ENTRY_FUNCTION_PAYLOAD) != ENTRY_FUNCTION_PAYLOAD:
        raise ValueError(f"unsupported payload type: {payload.get('type')}")

    function = payload.get("function")
    if function not in TRANSFER_FUNCTIONS:
        raise ValueError(f"unsupported transfer function: {function}")

    arguments = payload.get("arguments")
    if not isinstance(arguments, list) or len(arguments) != 2:
        raise ValueError("transfer expects [recipient, amount] arguments")
    recipient, amount = arguments
    if not isinstance(recipient, str):
        raise ValueError("transfer recipient must be an address string")

    type_arguments = payload.get("type_arguments") or []
    if function == ACCOUNT_TRANSFER_FUNCTION:
        asset = APTOS_COIN
    elif len(type_arguments) == 1 and isinstance(type_arguments[0], str):
        asset = type_arguments[0]
    else:
        raise ValueError("transfer expects exactly one coin type argument")

    expiration = tx.get("expiration_timestamp_secs")
    expiration_secs = _parse_amount(expiration) if expiration is not None else None

    authenticator = tx.get("signature")
    auth_public_key = None
    if isinstance(authenticator, dict):
        auth_public_key = authenticator.get("public_key")

    return TransferTransaction(
        sender=normalize_address(sender),
        recipient=normalize_address(recipient),
        amount=_parse_amount(amount),
        asset=normalize_asset(asset),
        expiration_timestamp_secs=expiration_secs,
        authenticator_public_key=auth_public_key,
        raw=tx,
    )


# ============================================================================
# Signing scheme
# ============================================================================


def signing_message(blob: str | dict[str, Any]) -> bytes:
    """Bytes a proof signature covers: domain + canonical unsigned transaction."""
    tx = dict(parse_transaction(blob))
    tx.pop("signature", None)
    return PROOF_SIGNING_DOMAIN + canonical_json(tx)


def derive_address(public_key: str | bytes) -> str:
    """Account address of a single-key Ed25519 account."""
    key = public_key if isinstance(public_key, bytes) else decode_hex(public_key, PUBLIC_KEY_LEN)
    return "0x" + hashlib.sha3_256(key + ED25519_SCHEME).hexdigest()


def verify_signature(public_key: str, signature: str, message: bytes) -> bool:
    """Check an Ed25519 signature. Malformed keys or signatures verify as False."""
    try:
        key = Ed25519PublicKey.from_public_bytes(decode_hex(public_key, PUBLIC_KEY_LEN))
        key.verify(decode_hex(signature, SIGNATURE_LEN), message)
    except (InvalidSignature, ValueError):
        return False
    return True


def transaction_key(blob: str | dict[str, Any], signature: str) -> str:
    """Stable identifier of a signed proof, used before the ledger assigns a hash."""
    digest = hashlib.sha3_256(signing_message(blob) + decode_hex(signature))
    return "0x" + digest.hexdigest()


def build_transfer_transaction(
    sender: str,
    recipient: str,
    amount: int | str,
    asset: str = APTOS_COIN,
    expiration_timestamp_secs: int | None = None,
    sequence_number: int = 0,
    chain_id: int | None = None,
    max_gas_amount: int = DEFAULT_MAX_GAS_AMOUNT,
    gas_unit_price: int = DEFAULT_GAS_UNIT_PRICE,
) -> dict[str, Any]:
    """Build an unsigned ``0x1::coin::transfer`` transaction in REST format."""
    tx: dict[str, Any] = {
        "sender": normalize_address(sender),
        "sequence_number": str(sequence_number),
        "max_gas_amount": str(max_gas_amount),
        "gas_unit_price": str(gas_unit_price),
        "payload": {
            "type": ENTRY_FUNCTION_PAYLOAD,
            "function": "0x1::coin::transfer",
            "type_arguments": [asset],
            "arguments": [normalize_address(recipient), str(amount)],
        },
    }
    if expiration_timestamp_secs is not None:
        tx["expiration_timestamp_secs"] = str(expiration_timestamp_secs)
    if chain_id is not None:
        tx["chain_id"] = chain_id
    return tx
