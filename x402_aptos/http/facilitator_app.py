"""Facilitator service: payment verification over HTTP.

Endpoints:
    GET  /health             service status
    POST /verify             verify and settle a PaymentProof
    GET  /transaction/{id}   look up a settled transaction
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .. import __version__
from ..facilitator import BaseLedgerVerifier
from ..schemas import ErrorCode, PaymentProof, VerificationResult, now_ms

logger = logging.getLogger(__name__)

SERVICE_NAME = "x402 Aptos Facilitator"


def _result_response(result: VerificationResult, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(by_alias=True, exclude_none=True, mode="json"),
    )


def create_app(
    verifier: BaseLedgerVerifier,
    network: str | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Build the facilitator application around a verifier.

    Args:
        verifier: Simulated or live verifier doing the work.
        network: Network name reported by /health.
        cors_origins: Allowed CORS origins (defaults to all).

    Returns:
        FastAPI application.
    """
    app = FastAPI(
        title=SERVICE_NAME,
        description="Facilitator service for x402 payments on Aptos",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.verifier = verifier

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": __version__,
            "mode": verifier.mode,
            "network": network,
            "timestamp": now_ms(),
        }

    @app.post("/verify")
    async def verify(request: Request) -> JSONResponse:
        """Verify a payment proof"""
        body = await request.body()
        try:
            proof = PaymentProof.model_validate_json(body)
        except ValidationError as e:
            return _result_response(
                VerificationResult.failure(
                    ErrorCode.MALFORMED_PROOF,
                    f"Invalid payment proof: {e.error_count()} field error(s)",
                )
            )

        result = await verifier.verify(proof)
        if result.error_code == ErrorCode.INTERNAL_ERROR:
            return _result_response(result, status_code=500)
        return _result_response(result)

    @app.get("/transaction/{transaction_id}")
    async def get_transaction(transaction_id: str) -> JSONResponse:
        """Look up a transaction"""
        try:
            details = await verifier.lookup(transaction_id)
        except Exception:
            logger.exception("Transaction lookup failed for %s", transaction_id)
            return JSONResponse(status_code=500, content={"error": "Transaction lookup failed"})
        if details is None:
            return JSONResponse(
                status_code=404,
                content={
                    "hash": transaction_id,
                    "confirmed": False,
                    "error": "Transaction not found",
                },
            )
        return JSONResponse(content=json.loads(json.dumps(details, default=str)))

    return app


def main() -> None:
    """Run the facilitator with settings from the environment."""
    import uvicorn

    from ..config import build_verifier, load_settings

    logging.basicConfig(level=logging.INFO)
    settings = load_settings()
    verifier = build_verifier(settings, remote=False)
    logger.info("Starting %s (%s) on %s", SERVICE_NAME, verifier.mode, settings.network)
    uvicorn.run(
        create_app(verifier, network=settings.network),
        host=settings.facilitator_host,
        port=settings.facilitator_port,
    )


if __name__ == "__main__":
    main()
