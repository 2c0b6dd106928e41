"""Deployment settings loaded from the environment.

Variables (a ``.env`` file is honoured):

    X402_PAY_TO                        payment address (required for gateways)
    X402_NETWORK                       aptos-mainnet | aptos-testnet | aptos-devnet
    X402_MODE                          simulated | live
    X402_FACILITATOR_URL               remote facilitator; unset = verify in process
    X402_NODE_URL                      fullnode REST URL override
    X402_CHALLENGE_WINDOW_SECONDS      challenge validity (default 300)
    X402_CONFIRMATION_TIMEOUT_SECONDS  ledger confirmation bound (default 30)
    X402_FACILITATOR_HOST / _PORT      facilitator bind address
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from dotenv import load_dotenv

from .facilitator import MODE_LIVE, MODE_SIMULATED, LiveLedgerVerifier, SimulatedLedgerVerifier
from .http.facilitator_client import FacilitatorConfig, HTTPFacilitatorClient
from .interfaces import LedgerVerifier
from .mechanisms.aptos.constants import DEFAULT_CONFIRMATION_TIMEOUT_SECONDS, NETWORK_TESTNET
from .mechanisms.aptos.ledger import AptosLedgerClient, LedgerConfig, normalize_network
from .schemas import DEFAULT_CHALLENGE_WINDOW_SECONDS
from .validation import ProofValidator

logger = logging.getLogger(__name__)

MODES = (MODE_SIMULATED, MODE_LIVE)


@dataclass
class Settings:
    """Deployment settings."""

    pay_to: str | None = None
    network: str = NETWORK_TESTNET
    mode: str = MODE_SIMULATED
    facilitator_url: str | None = None
    node_url: str | None = None
    window_seconds: int = DEFAULT_CHALLENGE_WINDOW_SECONDS
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
    facilitator_host: str = "0.0.0.0"
    facilitator_port: int = 3001


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def load_settings(
    env: Mapping[str, str] | None = None,
    env_file: str | None = None,
) -> Settings:
    """Load settings from ``env`` (defaults to os.environ after .env loading).

    Raises:
        ValueError: If a variable holds an invalid value.
    """
    if env is None:
        load_dotenv(env_file)
        env = os.environ

    mode = env.get("X402_MODE", MODE_SIMULATED).strip().lower()
    if mode not in MODES:
        raise ValueError(f"X402_MODE must be one of {', '.join(MODES)}, got {mode!r}")

    return Settings(
        pay_to=env.get("X402_PAY_TO") or None,
        network=normalize_network(env.get("X402_NETWORK", NETWORK_TESTNET)),
        mode=mode,
        facilitator_url=env.get("X402_FACILITATOR_URL") or None,
        node_url=env.get("X402_NODE_URL") or None,
        window_seconds=_get_int(
            env, "X402_CHALLENGE_WINDOW_SECONDS", DEFAULT_CHALLENGE_WINDOW_SECONDS
        ),
        confirmation_timeout=_get_float(
            env, "X402_CONFIRMATION_TIMEOUT_SECONDS", DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
        ),
        facilitator_host=env.get("X402_FACILITATOR_HOST", "0.0.0.0"),
        facilitator_port=_get_int(env, "X402_FACILITATOR_PORT", 3001),
    )


def build_verifier(settings: Settings, remote: bool = True) -> LedgerVerifier:
    """Choose the verifier once, at wiring time.

    Args:
        settings: Loaded settings.
        remote: Use X402_FACILITATOR_URL when set. The facilitator service
            itself passes False.

    Returns:
        HTTPFacilitatorClient, LiveLedgerVerifier or SimulatedLedgerVerifier.
    """
    if remote and settings.facilitator_url:
        logger.info("Verifying payments through facilitator %s", settings.facilitator_url)
        return HTTPFacilitatorClient(FacilitatorConfig(url=settings.facilitator_url))

    validator = ProofValidator(pay_to=settings.pay_to, window_seconds=settings.window_seconds)
    if settings.mode == MODE_LIVE:
        ledger = AptosLedgerClient(
            LedgerConfig(network=settings.network, node_url=settings.node_url)
        )
        return LiveLedgerVerifier(
            ledger,
            confirmation_timeout=settings.confirmation_timeout,
            validator=validator,
        )

    logger.warning("Payments are verified in SIMULATED mode; nothing is settled on chain")
    return SimulatedLedgerVerifier(validator=validator)
