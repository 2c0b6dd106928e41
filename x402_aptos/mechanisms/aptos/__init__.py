"""Aptos ledger mechanism for x402 payments."""

from .constants import (
    APTOS_COIN,
    APTOS_COIN_DECIMALS,
    NETWORK_DEVNET,
    NETWORK_MAINNET,
    NETWORK_NODE_URLS,
    NETWORK_TESTNET,
)
from .ledger import (
    AptosLedgerClient,
    Confirmation,
    ConfirmationStatus,
    LedgerConfig,
    LedgerError,
    normalize_network,
)
from .signers import LocalEd25519Signer
from .transaction import (
    TransferTransaction,
    addresses_equal,
    build_transfer_transaction,
    decode_transfer,
    derive_address,
    normalize_address,
    signing_message,
    transaction_key,
    verify_signature,
)

__all__ = [
    # Constants
    "APTOS_COIN",
    "APTOS_COIN_DECIMALS",
    "NETWORK_MAINNET",
    "NETWORK_TESTNET",
    "NETWORK_DEVNET",
    "NETWORK_NODE_URLS",
    # Ledger
    "AptosLedgerClient",
    "LedgerConfig",
    "LedgerError",
    "Confirmation",
    "ConfirmationStatus",
    "normalize_network",
    # Signers
    "LocalEd25519Signer",
    # Transactions
    "TransferTransaction",
    "decode_transfer",
    "build_transfer_transaction",
    "signing_message",
    "transaction_key",
    "derive_address",
    "normalize_address",
    "addresses_equal",
    "verify_signature",
]
