"""Base model and protocol constants shared by all x402 Aptos schemas."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

X402_VERSION = 1

# Native coin of the ledger, used when a route does not name an asset.
DEFAULT_ASSET = "0x1::aptos_coin::AptosCoin"
DEFAULT_DECIMALS = 8

# Challenge validity window.
DEFAULT_CHALLENGE_WINDOW_SECONDS = 300


class BaseX402Model(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def parse_minor_units(value: str) -> int:
    """Parse a non-negative integer amount in minor units.

    Args:
        value: Decimal string such as "1000000".

    Returns:
        The amount as an int.

    Raises:
        ValueError: If value is not a plain non-negative integer string.
    """
    if not isinstance(value, str):
        raise ValueError("amount must be an integer encoded as a string")
    text = value.strip()
    if not text.isdigit():
        raise ValueError("amount must be a non-negative integer encoded as a string")
    return int(text)
