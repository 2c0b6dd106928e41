"""Constants for the Aptos ledger."""

from x402_aptos.schemas.base import DEFAULT_ASSET, DEFAULT_DECIMALS

NETWORK_MAINNET = "aptos-mainnet"
NETWORK_TESTNET = "aptos-testnet"
NETWORK_DEVNET = "aptos-devnet"

APTOS_COIN = DEFAULT_ASSET
APTOS_COIN_DECIMALS = DEFAULT_DECIMALS

NETWORK_NODE_URLS: dict[str, str] = {
    NETWORK_MAINNET: "https://fullnode.mainnet.aptoslabs.com/v1",
    NETWORK_TESTNET: "https://fullnode.testnet.aptoslabs.com/v1",
    NETWORK_DEVNET: "https://fullnode.devnet.aptoslabs.com/v1",
}

NETWORK_CHAIN_IDS: dict[str, int] = {
    NETWORK_MAINNET: 1,
    NETWORK_TESTNET: 2,
}

# Short names accepted in configuration ("testnet" -> "aptos-testnet").
NETWORK_ALIASES: dict[str, str] = {
    "mainnet": NETWORK_MAINNET,
    "testnet": NETWORK_TESTNET,
    "devnet": NETWORK_DEVNET,
}

# Entry functions that move coins from sender to recipient.
COIN_TRANSFER_FUNCTION = "0x1::coin::transfer"
ACCOUNT_TRANSFER_COINS_FUNCTION = "0x1::aptos_account::transfer_coins"
ACCOUNT_TRANSFER_FUNCTION = "0x1::aptos_account::transfer"
TRANSFER_FUNCTIONS = frozenset(
    {COIN_TRANSFER_FUNCTION, ACCOUNT_TRANSFER_COINS_FUNCTION, ACCOUNT_TRANSFER_FUNCTION}
)

ENTRY_FUNCTION_PAYLOAD = "entry_function_payload"
ED25519_SIGNATURE = "ed25519_signature"

# Domain separator prepended to the canonical transaction when signing proofs.
PROOF_SIGNING_DOMAIN = b"X402::APTOS::PROOF::"

# Single-key Ed25519 authentication key scheme byte.
ED25519_SCHEME = b"\x00"

ADDRESS_HEX_LEN = 64
PUBLIC_KEY_LEN = 32
PRIVATE_KEY_LEN = 32
SIGNATURE_LEN = 64

DEFAULT_MAX_GAS_AMOUNT = 2000
DEFAULT_GAS_UNIT_PRICE = 100

DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 30.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
