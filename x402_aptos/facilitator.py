"""Ledger verification of payment proofs.

Two verifiers share one contract, ``verify(proof, requirement=None)``:

- SimulatedLedgerVerifier: no ledger access, deterministic ids. Local
  development and tests only.
- LiveLedgerVerifier: submits the signed transfer once and waits for it
  to commit, bounded by a timeout.

Pick one when wiring the application. Both cache confirmed results by
transaction key, so the same proof never settles twice in one process.
"""

from __future__ import annotations

import asyncio
import hashlib
import heapq
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import httpx

from .interfaces import LedgerClient, Requirement
from .mechanisms.aptos.constants import DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
from .mechanisms.aptos.ledger import ConfirmationStatus, LedgerError
from .mechanisms.aptos.transaction import TransferTransaction, transaction_key
from .schemas import (
    ErrorCode,
    PaymentProof,
    ValidationOutcome,
    VerificationResult,
    now_ms,
)
from .validation import ProofValidator, parse_proof

logger = logging.getLogger(__name__)

MODE_SIMULATED = "simulated"
MODE_LIVE = "live"


class VerificationState(str, Enum):
    """Stages of a single verification attempt."""

    RECEIVED = "received"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (
            VerificationState.CONFIRMED,
            VerificationState.FAILED,
            VerificationState.TIMED_OUT,
        )


# ============================================================================
# Idempotence cache
# ============================================================================


class SettlementCache:
    """Settlement records keyed by transaction key.

    Holds confirmed results, transactions submitted but not yet confirmed,
    and in-flight settlements. Concurrent callers with the same key share
    one settlement task. Only successful results are kept; failures may be
    retried by the caller. Every record carries an ``expires_at`` (epoch
    ms) after which the proof can no longer be presented, and is evicted
    once that time passes.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._confirmed: dict[str, tuple[VerificationResult, int | None]] = {}
        self._by_transaction_id: dict[str, str] = {}
        self._submitted: dict[str, tuple[str, int | None]] = {}
        self._in_flight: dict[str, asyncio.Future[VerificationResult]] = {}
        self._expiry: list[tuple[int, str]] = []

    def get(self, key: str) -> VerificationResult | None:
        with self._lock:
            self._evict_expired()
            entry = self._confirmed.get(key)
            return entry[0] if entry else None

    def find_transaction(self, transaction_id: str) -> VerificationResult | None:
        with self._lock:
            self._evict_expired()
            key = self._by_transaction_id.get(transaction_id)
            entry = self._confirmed.get(key) if key else None
            return entry[0] if entry else None

    def submission(self, key: str) -> str | None:
        """Ledger hash of a submitted but unconfirmed transaction."""
        with self._lock:
            self._evict_expired()
            entry = self._submitted.get(key)
            return entry[0] if entry else None

    def record_submission(self, key: str, tx_hash: str, expires_at: int | None = None) -> None:
        """Remember that ``key`` reached the ledger as ``tx_hash``."""
        with self._lock:
            self._evict_expired()
            self._submitted[key] = (tx_hash, expires_at)
            self._schedule(key, expires_at)

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._confirmed)

    async def run_once(
        self,
        key: str,
        settle: Callable[[], Awaitable[VerificationResult]],
        expires_at: int | None = None,
    ) -> VerificationResult:
        """Return the cached result for ``key`` or run ``settle`` exactly once.

        Args:
            key: Transaction key of the proof.
            settle: Coroutine factory performing the settlement.
            expires_at: Epoch ms after which a success may be forgotten.
                None keeps it for the life of the cache.

        Returns:
            The settlement result shared by every concurrent caller.
        """
        with self._lock:
            self._evict_expired()
            cached = self._confirmed.get(key)
            if cached is not None:
                return cached[0]
            task = self._in_flight.get(key)
            if task is None:
                task = asyncio.ensure_future(settle())
                self._in_flight[key] = task
                task.add_done_callback(lambda t: self._finish(key, t, expires_at))

        # A cancelled caller must not cancel the settlement other callers share.
        return await asyncio.shield(task)

    def _finish(
        self,
        key: str,
        task: asyncio.Future[VerificationResult],
        expires_at: int | None,
    ) -> None:
        with self._lock:
            self._in_flight.pop(key, None)
            if task.cancelled() or task.exception() is not None:
                return
            result = task.result()
            if result.is_valid:
                self._submitted.pop(key, None)
                self._confirmed[key] = (result, expires_at)
                if result.transaction_id:
                    self._by_transaction_id[result.transaction_id] = key
                self._schedule(key, expires_at)

    # Caller holds the lock.
    def _schedule(self, key: str, expires_at: int | None) -> None:
        if expires_at is not None:
            heapq.heappush(self._expiry, (expires_at, key))

    def _evict_expired(self) -> None:
        now = self._clock()
        while self._expiry and self._expiry[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiry)
            entry = self._confirmed.get(key)
            if entry is not None and entry[1] == expires_at:
                del self._confirmed[key]
                if entry[0].transaction_id:
                    self._by_transaction_id.pop(entry[0].transaction_id, None)
            pending = self._submitted.get(key)
            if pending is not None and pending[1] == expires_at:
                del self._submitted[key]


# ============================================================================
# Verifiers
# ============================================================================


class BaseLedgerVerifier(ABC):
    """Shared verify flow: validate, then settle once per transaction key."""

    mode: str

    def __init__(
        self,
        validator: ProofValidator | None = None,
        cache: SettlementCache | None = None,
    ) -> None:
        self._validator = validator or ProofValidator()
        self._cache = cache or SettlementCache()

    @property
    def cache(self) -> SettlementCache:
        return self._cache

    async def verify(
        self,
        proof: PaymentProof | dict[str, Any] | str,
        requirement: Requirement = None,
    ) -> VerificationResult:
        """Verify a proof and settle it on the ledger.

        Never raises: every failure is a VerificationResult with
        ``is_valid=False`` and an error code.

        Args:
            proof: Proof model, dict, or JSON text.
            requirement: Challenge or price the proof must satisfy.

        Returns:
            VerificationResult.
        """
        payer: str | None = None
        try:
            self._trace(VerificationState.RECEIVED)
            outcome = self._validate(proof, requirement)
            if not outcome.ok:
                logger.warning(
                    "Payment proof rejected: %s (%s)", outcome.reason, outcome.code.value
                )
                return VerificationResult.failure(outcome.code, outcome.reason)

            parsed = parse_proof(proof)
            transfer: TransferTransaction = outcome.details
            payer = transfer.sender
            key = transaction_key(parsed.transaction, parsed.signature)
            return await self._cache.run_once(
                key,
                lambda: self._settle(parsed, transfer, key),
                expires_at=self._validator.replay_deadline(parsed, transfer),
            )
        except Exception:
            logger.exception("Unexpected error verifying payment")
            return VerificationResult.failure(
                ErrorCode.INTERNAL_ERROR, "Internal verification error", payer=payer
            )

    async def lookup(self, transaction_id: str) -> dict[str, Any] | None:
        """Details of a transaction this verifier settled, if known."""
        result = self._cache.find_transaction(transaction_id)
        if result is None:
            return None
        return {
            "hash": transaction_id,
            "confirmed": True,
            "details": result.model_dump(by_alias=True, exclude_none=True, mode="json"),
        }

    def _validate(self, proof: Any, requirement: Requirement) -> ValidationOutcome:
        self._trace(VerificationState.VALIDATING)
        return self._validator.validate(proof, requirement)

    @abstractmethod
    async def _settle(
        self,
        proof: PaymentProof,
        transfer: TransferTransaction,
        key: str,
    ) -> VerificationResult:
        """Settle a statically valid proof."""
        ...

    def _trace(self, state: VerificationState, key: str | None = None) -> None:
        logger.debug("verification %s%s", state.value, f" [{key}]" if key else "")


class SimulatedLedgerVerifier(BaseLedgerVerifier):
    """Verifier that never touches the ledger.

    Proofs are still validated (including signatures); a valid proof is
    accepted with a transaction id derived from its key, so the same
    proof always yields the same id.
    """

    mode = MODE_SIMULATED

    def __init__(
        self,
        pay_to: str | None = None,
        validator: ProofValidator | None = None,
        cache: SettlementCache | None = None,
    ) -> None:
        super().__init__(validator or ProofValidator(pay_to=pay_to), cache)

    async def _settle(
        self,
        proof: PaymentProof,
        transfer: TransferTransaction,
        key: str,
    ) -> VerificationResult:
        transaction_id = "0x" + hashlib.sha3_256(b"simulated:" + key.encode()).hexdigest()
        self._trace(VerificationState.CONFIRMED, key)
        logger.info("Simulated settlement %s from %s", transaction_id, transfer.sender)
        return VerificationResult(
            is_valid=True,
            transaction_id=transaction_id,
            payer=transfer.sender,
        )


class LiveLedgerVerifier(BaseLedgerVerifier):
    """Verifier that settles proofs on the ledger.

    The flow per proof is balance check, one submission, then confirmation
    polling under ``confirmation_timeout``. Nothing is retried here. A proof
    that was submitted but not confirmed is never submitted again: verifying
    it again polls the hash recorded for it.
    """

    mode = MODE_LIVE

    def __init__(
        self,
        ledger: LedgerClient,
        pay_to: str | None = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
        validator: ProofValidator | None = None,
        cache: SettlementCache | None = None,
    ) -> None:
        super().__init__(validator or ProofValidator(pay_to=pay_to), cache)
        if confirmation_timeout <= 0:
            raise ValueError("confirmation timeout must be positive")
        self._ledger = ledger
        self._confirmation_timeout = confirmation_timeout

    @property
    def ledger(self) -> LedgerClient:
        return self._ledger

    async def lookup(self, transaction_id: str) -> dict[str, Any] | None:
        tx = await self._ledger.get_transaction(transaction_id)
        if tx is None:
            return None
        confirmed = tx.get("type") != "pending_transaction" and bool(tx.get("success"))
        return {"hash": transaction_id, "confirmed": confirmed, "details": tx}

    async def _settle(
        self,
        proof: PaymentProof,
        transfer: TransferTransaction,
        key: str,
    ) -> VerificationResult:
        payer = transfer.sender
        if transfer.authenticator_public_key is None:
            self._trace(VerificationState.FAILED, key)
            return VerificationResult.failure(
                ErrorCode.MALFORMED_PROOF,
                "Proof does not carry a fully-signed transaction",
                payer=payer,
            )

        tx_hash = self._cache.submission(key)
        if tx_hash is not None:
            logger.info("Transaction %s already submitted, awaiting confirmation", tx_hash)
        else:
            failure = await self._check_balance(transfer, key)
            if failure is not None:
                return failure
            tx_hash, failure = await self._submit(proof, transfer, key)
            if failure is not None:
                return failure
            self._cache.record_submission(
                key, tx_hash, self._validator.replay_deadline(proof, transfer)
            )

        return await self._confirm(tx_hash, payer, key)

    async def _check_balance(
        self,
        transfer: TransferTransaction,
        key: str,
    ) -> VerificationResult | None:
        payer = transfer.sender
        try:
            balance = await self._ledger.get_balance(payer, transfer.asset)
        except (LedgerError, httpx.HTTPError) as e:
            self._trace(VerificationState.FAILED, key)
            logger.warning("Could not read balance of %s: %s", payer, e)
            return VerificationResult.failure(
                ErrorCode.SUBMISSION_FAILED, "Could not read payer balance from the ledger", payer
            )
        if balance < transfer.amount:
            self._trace(VerificationState.FAILED, key)
            return VerificationResult.failure(
                ErrorCode.INSUFFICIENT_AMOUNT,
                f"Insufficient balance: {balance} available, {transfer.amount} required",
                payer=payer,
            )
        return None

    async def _submit(
        self,
        proof: PaymentProof,
        transfer: TransferTransaction,
        key: str,
    ) -> tuple[str | None, VerificationResult | None]:
        payer = transfer.sender
        self._trace(VerificationState.SUBMITTING, key)
        try:
            return await self._ledger.submit(proof.transaction), None
        except LedgerError as e:
            self._trace(VerificationState.FAILED, key)
            if e.is_signature_error:
                code = ErrorCode.SIGNATURE_REJECTED
            else:
                code = ErrorCode.SUBMISSION_FAILED
            logger.warning("Ledger rejected transaction from %s: %s", payer, e.message)
            return None, VerificationResult.failure(
                code, f"Ledger rejected transaction: {e.message}", payer
            )
        except httpx.HTTPError as e:
            self._trace(VerificationState.FAILED, key)
            logger.warning("Could not submit transaction from %s: %s", payer, e)
            return None, VerificationResult.failure(
                ErrorCode.SUBMISSION_FAILED, "Could not reach the ledger", payer
            )

    async def _confirm(self, tx_hash: str, payer: str, key: str) -> VerificationResult:
        self._trace(VerificationState.AWAITING_CONFIRMATION, key)
        timed_out = VerificationResult(
            is_valid=False,
            transaction_id=tx_hash,
            error=f"Transaction {tx_hash} not confirmed within {self._confirmation_timeout:g}s",
            error_code=ErrorCode.CONFIRMATION_TIMEOUT,
            payer=payer,
        )
        try:
            confirmation = await asyncio.wait_for(
                self._ledger.await_confirmation(tx_hash, self._confirmation_timeout),
                timeout=self._confirmation_timeout,
            )
        except asyncio.TimeoutError:
            self._trace(VerificationState.TIMED_OUT, key)
            logger.warning("Confirmation timed out for %s", tx_hash)
            return timed_out
        except (LedgerError, httpx.HTTPError) as e:
            self._trace(VerificationState.FAILED, key)
            logger.warning("Confirmation polling failed for %s: %s", tx_hash, e)
            return VerificationResult(
                is_valid=False,
                transaction_id=tx_hash,
                error=f"Could not read status of transaction {tx_hash} from the ledger",
                error_code=ErrorCode.SUBMISSION_FAILED,
                payer=payer,
            )

        if confirmation.status == ConfirmationStatus.CONFIRMED:
            self._trace(VerificationState.CONFIRMED, key)
            logger.info("Confirmed transaction %s from %s", tx_hash, payer)
            return VerificationResult(is_valid=True, transaction_id=tx_hash, payer=payer)

        if confirmation.status == ConfirmationStatus.FAILED:
            self._trace(VerificationState.FAILED, key)
            logger.warning("Transaction %s failed on chain: %s", tx_hash, confirmation.vm_status)
            return VerificationResult(
                is_valid=False,
                transaction_id=tx_hash,
                error=f"Transaction failed: {confirmation.vm_status or 'unknown status'}",
                error_code=ErrorCode.SUBMISSION_FAILED,
                payer=payer,
            )

        self._trace(VerificationState.TIMED_OUT, key)
        return timed_out
