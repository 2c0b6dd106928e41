"""REST client for an Aptos fullnode."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from typing_extensions import Self

from .constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    NETWORK_ALIASES,
    NETWORK_NODE_URLS,
    NETWORK_TESTNET,
)
from .transaction import normalize_address

logger = logging.getLogger(__name__)

_SIGNATURE_MARKERS = ("signature", "authenticator", "authentication_key")


class ConfirmationStatus(str, Enum):
    """Where a submitted transaction stands."""

    CONFIRMED = "confirmed"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class Confirmation:
    status: ConfirmationStatus
    vm_status: str | None = None


class LedgerError(Exception):
    """Raised when the fullnode rejects a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_signature_error(self) -> bool:
        """Whether the rejection concerns the signature or authenticator."""
        text = self.message.lower()
        return any(marker in text for marker in _SIGNATURE_MARKERS)


def normalize_network(network: str) -> str:
    """Map "testnet" style names to "aptos-testnet"."""
    name = network.strip().lower()
    return NETWORK_ALIASES.get(name, name)


@dataclass
class LedgerConfig:
    """Configuration for AptosLedgerClient."""

    network: str = NETWORK_TESTNET
    node_url: str | None = None
    timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    http_client: Any = None  # Optional httpx.AsyncClient


class AptosLedgerClient:
    """Async client for the fullnode REST API.

    Covers what payment settlement needs: submit a signed transaction,
    wait for it to commit, and read balances and transactions.
    """

    def __init__(self, config: LedgerConfig | None = None) -> None:
        config = config or LedgerConfig()
        self._network = normalize_network(config.network)
        url = config.node_url or NETWORK_NODE_URLS.get(self._network)
        if not url:
            raise ValueError(f"No fullnode URL known for network {config.network!r}")
        self._url = url.rstrip("/")
        self._timeout = config.timeout
        self._poll_interval = config.poll_interval
        self._http_client: httpx.AsyncClient | None = config.http_client
        self._owns_client = config.http_client is None

    @property
    def url(self) -> str:
        return self._url

    @property
    def network(self) -> str:
        return self._network

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(data, dict):
            message = data.get("message") or data.get("error_code")
            vm_error = data.get("vm_error_code")
            if message:
                return f"{message} (vm_error_code={vm_error})" if vm_error else str(message)
        return json.dumps(data)

    async def submit(self, transaction: str | dict[str, Any]) -> str:
        """Submit a signed transaction.

        Args:
            transaction: Signed transaction JSON.

        Returns:
            Transaction hash assigned by the ledger.

        Raises:
            LedgerError: If the fullnode rejects the transaction.
        """
        body = json.loads(transaction) if isinstance(transaction, str) else transaction
        response = await self._get_client().post(f"{self._url}/transactions", json=body)
        if response.status_code not in (200, 202):
            raise LedgerError(self._error_message(response), response.status_code)

        tx_hash = response.json().get("hash")
        if not tx_hash:
            raise LedgerError("Fullnode accepted the transaction without returning a hash")
        logger.info("Submitted transaction %s", tx_hash)
        return tx_hash

    async def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        """Fetch a transaction by hash. None if the ledger does not know it."""
        response = await self._get_client().get(f"{self._url}/transactions/by_hash/{tx_hash}")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise LedgerError(self._error_message(response), response.status_code)
        return response.json()

    async def await_confirmation(self, tx_hash: str, timeout: float) -> Confirmation:
        """Poll until the transaction commits or ``timeout`` seconds pass.

        Returns:
            Confirmation with CONFIRMED, FAILED (committed with success=false),
            or PENDING when the timeout elapsed first.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            tx = await self.get_transaction(tx_hash)
            if tx is not None and tx.get("type") != "pending_transaction":
                vm_status = tx.get("vm_status")
                if tx.get("success"):
                    return Confirmation(ConfirmationStatus.CONFIRMED, vm_status)
                return Confirmation(ConfirmationStatus.FAILED, vm_status)

            remaining = deadline - loop.time()
            if remaining <= 0:
                return Confirmation(ConfirmationStatus.PENDING)
            await asyncio.sleep(min(self._poll_interval, remaining))

    async def get_balance(self, address: str, asset: str) -> int:
        """Balance of ``asset`` held by ``address``, in minor units."""
        response = await self._get_client().post(
            f"{self._url}/view",
            json={
                "function": "0x1::coin::balance",
                "type_arguments": [asset],
                "arguments": [normalize_address(address)],
            },
        )
        if response.status_code != 200:
            raise LedgerError(self._error_message(response), response.status_code)
        values = response.json()
        return int(values[0]) if values else 0
