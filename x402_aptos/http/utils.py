"""Header and body codecs for x402 Aptos payments."""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from ..schemas import (
    MalformedChallengeError,
    MalformedProofError,
    PaymentProof,
    PaymentRequiredResponse,
    SettlementReceipt,
)


def safe_base64_encode(data: str | bytes) -> str:
    """Safely encode string or bytes to base64 string.

    Args:
        data: String or bytes to encode

    Returns:
        Base64 encoded string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def safe_base64_decode(data: str) -> str:
    """Safely decode base64 string to bytes and then to utf-8 string.

    Args:
        data: Base64 encoded string

    Returns:
        Decoded utf-8 string
    """
    return base64.b64decode(data, validate=True).decode("utf-8")


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup over any mapping."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def encode_payment_header(proof: PaymentProof) -> str:
    """Encode a proof as an X-Payment header value (JSON)."""
    return proof.to_header()


def decode_payment_header(value: str) -> PaymentProof:
    """Decode an X-Payment header value.

    Accepts the JSON proof, or the same JSON wrapped in base64.

    Raises:
        MalformedProofError: If the value is not a valid proof.
    """
    text = value.strip()
    if not text:
        raise MalformedProofError("Empty X-Payment header")
    if not text.startswith("{"):
        try:
            text = safe_base64_decode(text)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            raise MalformedProofError("X-Payment header is neither JSON nor base64 JSON") from None
    try:
        return PaymentProof.model_validate_json(text)
    except ValidationError as e:
        raise MalformedProofError(f"Invalid payment proof: {e.error_count()} field error(s)") from e


def encode_receipt_header(receipt: SettlementReceipt) -> str:
    """Encode a settlement receipt as an X-Payment-Response header value."""
    return receipt.model_dump_json(by_alias=True, exclude_none=True)


def decode_receipt_header(value: str) -> SettlementReceipt:
    """Decode an X-Payment-Response header value."""
    return SettlementReceipt.model_validate_json(value)


def parse_payment_required(body: bytes | str | dict[str, Any]) -> PaymentRequiredResponse:
    """Parse a 402 response body.

    Raises:
        MalformedChallengeError: If the body does not carry a usable challenge.
    """
    try:
        if isinstance(body, (bytes, str)):
            data = json.loads(body)
        else:
            data = body
        return PaymentRequiredResponse.model_validate(data)
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        raise MalformedChallengeError(f"Invalid 402 response: {e}") from e
