"""x402 Aptos - HTTP 402 pay-per-request payments settled on Aptos.

Quick start (server):
    ```python
    from fastapi import FastAPI

    from x402_aptos import GatewayConfig, RouteTable, SimulatedLedgerVerifier
    from x402_aptos.fastapi import PaymentMiddleware

    routes = RouteTable.from_config({"GET /weather": {"amount": "1000000"}})
    app = FastAPI()
    app.add_middleware(
        PaymentMiddleware,
        config=GatewayConfig(
            routes=routes,
            pay_to=PAY_TO,
            verifier=SimulatedLedgerVerifier(pay_to=PAY_TO),
        ),
    )
    ```

Quick start (client):
    ```python
    from x402_aptos.http.clients import x402AptosClient
    from x402_aptos.mechanisms.aptos import LocalEd25519Signer

    async with x402AptosClient(LocalEd25519Signer.generate()) as client:
        response = await client.fetch_with_payment(url)
    ```
"""

__version__ = "0.1.0"

from .challenge import ChallengeIssuer, generate_nonce
from .facilitator import (
    LiveLedgerVerifier,
    SettlementCache,
    SimulatedLedgerVerifier,
    VerificationState,
)
from .interfaces import LedgerClient, LedgerVerifier, PaymentSigner
from .routes import RoutePattern, RouteTable, match
from .schemas import (
    X402_VERSION,
    AssetSpec,
    Challenge,
    ErrorCode,
    ExpiredChallengeError,
    FacilitatorError,
    InsufficientBalanceError,
    MalformedChallengeError,
    MalformedProofError,
    PaymentAmountExceededError,
    PaymentError,
    PaymentProof,
    PaymentRejectedError,
    PaymentRequiredResponse,
    PriceSpec,
    RouteConfigurationError,
    SettlementReceipt,
    ValidationOutcome,
    VerificationResult,
)
from .server import GatewayConfig, GatewayDecision, GatewayResponse, PaymentGateway
from .validation import ProofValidator

__all__ = [
    "__version__",
    "X402_VERSION",
    # Routing
    "RoutePattern",
    "RouteTable",
    "match",
    # Components
    "ChallengeIssuer",
    "generate_nonce",
    "ProofValidator",
    "SimulatedLedgerVerifier",
    "LiveLedgerVerifier",
    "SettlementCache",
    "VerificationState",
    "PaymentGateway",
    "GatewayConfig",
    "GatewayDecision",
    "GatewayResponse",
    # Interfaces
    "PaymentSigner",
    "LedgerClient",
    "LedgerVerifier",
    # Types
    "AssetSpec",
    "PriceSpec",
    "Challenge",
    "PaymentRequiredResponse",
    "PaymentProof",
    "VerificationResult",
    "SettlementReceipt",
    "ValidationOutcome",
    # Errors
    "ErrorCode",
    "PaymentError",
    "MalformedChallengeError",
    "MalformedProofError",
    "ExpiredChallengeError",
    "PaymentAmountExceededError",
    "InsufficientBalanceError",
    "PaymentRejectedError",
    "FacilitatorError",
    "RouteConfigurationError",
]
