"""Tests for simulated and live ledger verifiers."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.mocks import OTHER_ADDRESS, PAY_TO, FakeLedger, make_challenge
from x402_aptos import (
    ErrorCode,
    LiveLedgerVerifier,
    SettlementCache,
    SimulatedLedgerVerifier,
    VerificationResult,
    VerificationState,
)
from x402_aptos.mechanisms.aptos import Confirmation, ConfirmationStatus, LedgerError
from x402_aptos.schemas import now_ms
from x402_aptos.validation import ProofValidator


class TestVerificationState:
    def test_terminal_states(self):
        terminal = {s for s in VerificationState if s.is_terminal}
        assert terminal == {
            VerificationState.CONFIRMED,
            VerificationState.FAILED,
            VerificationState.TIMED_OUT,
        }


class TestSimulatedLedgerVerifier:
    @pytest.mark.asyncio
    async def test_valid_proof(self, simulated_verifier, signer):
        challenge = make_challenge()
        result = await simulated_verifier.verify(signer.sign(challenge), challenge)

        assert result.is_valid
        assert result.transaction_id.startswith("0x")
        assert len(result.transaction_id) == 66
        assert result.payer == signer.address
        assert simulated_verifier.mode == "simulated"

    @pytest.mark.asyncio
    async def test_same_proof_same_result(self, simulated_verifier, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)

        first = await simulated_verifier.verify(proof, challenge)
        second = await simulated_verifier.verify(proof, challenge)

        assert first == second

    @pytest.mark.asyncio
    async def test_transaction_id_is_deterministic_across_instances(self, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)

        a = await SimulatedLedgerVerifier(pay_to=PAY_TO).verify(proof, challenge)
        b = await SimulatedLedgerVerifier(pay_to=PAY_TO).verify(proof, challenge)

        assert a.transaction_id == b.transaction_id

    @pytest.mark.asyncio
    async def test_timestamp_does_not_change_identity(self, simulated_verifier, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)
        resent = proof.model_copy(update={"timestamp": proof.timestamp + 1000})

        first = await simulated_verifier.verify(proof, challenge)
        second = await simulated_verifier.verify(resent, challenge)

        assert first.transaction_id == second.transaction_id

    @pytest.mark.asyncio
    async def test_distinct_proofs_distinct_ids(self, simulated_verifier, signer):
        challenge = make_challenge()
        first = await simulated_verifier.verify(signer.sign(challenge), challenge)
        second = await simulated_verifier.verify(signer.sign(challenge), challenge)

        assert first.transaction_id != second.transaction_id

    @pytest.mark.asyncio
    async def test_still_validates(self, simulated_verifier, signer):
        proof = signer.sign(make_challenge(recipient=OTHER_ADDRESS))
        result = await simulated_verifier.verify(proof, make_challenge())

        assert not result.is_valid
        assert result.error_code == ErrorCode.WRONG_RECIPIENT
        assert result.transaction_id is None

    @pytest.mark.asyncio
    async def test_malformed_proof_dict(self, simulated_verifier):
        result = await simulated_verifier.verify({"signature": "0x00"})
        assert result.error_code == ErrorCode.MALFORMED_PROOF

    @pytest.mark.asyncio
    async def test_lookup(self, simulated_verifier, signer):
        challenge = make_challenge()
        result = await simulated_verifier.verify(signer.sign(challenge), challenge)

        found = await simulated_verifier.lookup(result.transaction_id)
        assert found["confirmed"] is True
        assert found["details"]["transactionId"] == result.transaction_id
        assert await simulated_verifier.lookup("0xunknown") is None

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_result(self, signer):
        validator = MagicMock()
        validator.validate.side_effect = RuntimeError("boom")
        verifier = SimulatedLedgerVerifier(validator=validator)

        result = await verifier.verify(signer.sign(make_challenge()))

        assert not result.is_valid
        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert "boom" not in result.error


class TestLiveLedgerVerifier:
    @pytest.mark.asyncio
    async def test_confirmed(self, signer):
        ledger = FakeLedger()
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()
        proof = signer.sign(challenge)

        result = await verifier.verify(proof, challenge)

        assert result.is_valid
        assert result.transaction_id == "0x" + f"{1:064x}"
        assert result.payer == signer.address
        assert ledger.submitted == [proof.transaction]
        native = "0x" + "0" * 63 + "1::aptos_coin::AptosCoin"
        assert ledger.balance_calls == [(signer.address, native)]

    @pytest.mark.asyncio
    async def test_idempotent_resubmission(self, signer):
        ledger = FakeLedger()
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()
        proof = signer.sign(challenge)

        first = await verifier.verify(proof, challenge)
        second = await verifier.verify(proof, challenge)

        assert first == second
        assert len(ledger.submitted) == 1
        assert len(verifier.cache) == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_proofs_submit_once(self, signer):
        ledger = FakeLedger(submit_delay=0.05)
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()
        proof = signer.sign(challenge)

        first, second = await asyncio.gather(
            verifier.verify(proof, challenge),
            verifier.verify(proof, challenge),
        )

        assert first.is_valid and second.is_valid
        assert first.transaction_id == second.transaction_id
        assert len(ledger.submitted) == 1

    @pytest.mark.asyncio
    async def test_other_requests_proceed_during_settlement(self, signer):
        ledger = FakeLedger(submit_delay=0.05)
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        results = await asyncio.gather(
            verifier.verify(signer.sign(challenge), challenge),
            verifier.verify(signer.sign(challenge), challenge),
        )

        assert all(r.is_valid for r in results)
        assert len(ledger.submitted) == 2

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, signer):
        ledger = FakeLedger(balance=10)
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        result = await verifier.verify(signer.sign(challenge), challenge)

        assert result.error_code == ErrorCode.INSUFFICIENT_AMOUNT
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_signature_rejected_by_ledger(self, signer):
        ledger = FakeLedger(submit_error=LedgerError("Invalid transaction: INVALID_SIGNATURE", 400))
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        result = await verifier.verify(signer.sign(challenge), challenge)

        assert result.error_code == ErrorCode.SIGNATURE_REJECTED

    @pytest.mark.asyncio
    async def test_submission_failed(self, signer):
        ledger = FakeLedger(submit_error=LedgerError("SEQUENCE_NUMBER_TOO_OLD", 400))
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        result = await verifier.verify(signer.sign(challenge), challenge)

        assert result.error_code == ErrorCode.SUBMISSION_FAILED
        assert "SEQUENCE_NUMBER_TOO_OLD" in result.error

    @pytest.mark.asyncio
    async def test_failed_on_chain(self, signer):
        ledger = FakeLedger(
            confirmation=Confirmation(
                ConfirmationStatus.FAILED, "Move abort: EINSUFFICIENT_BALANCE"
            )
        )
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        result = await verifier.verify(signer.sign(challenge), challenge)

        assert result.error_code == ErrorCode.SUBMISSION_FAILED
        assert result.transaction_id is not None

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, signer):
        ledger = FakeLedger(confirmation_delay=5)
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO, confirmation_timeout=0.05)
        challenge = make_challenge()
        proof = signer.sign(challenge)

        result = await verifier.verify(proof, challenge)

        assert not result.is_valid
        assert result.error_code == ErrorCode.CONFIRMATION_TIMEOUT
        assert result.transaction_id == "0x" + f"{1:064x}"
        assert len(verifier.cache) == 0

    @pytest.mark.asyncio
    async def test_pending_after_polling_is_timeout(self, signer):
        ledger = FakeLedger(confirmation=Confirmation(ConfirmationStatus.PENDING))
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        result = await verifier.verify(signer.sign(challenge), challenge)

        assert result.error_code == ErrorCode.CONFIRMATION_TIMEOUT

    @pytest.mark.asyncio
    async def test_retry_after_timeout_polls_recorded_hash(self, signer):
        ledger = FakeLedger(confirmation_delay=0.2)
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO, confirmation_timeout=0.05)
        challenge = make_challenge()
        proof = signer.sign(challenge)

        first = await verifier.verify(proof, challenge)
        ledger.confirmation_delay = 0
        second = await verifier.verify(proof, challenge)

        assert first.error_code == ErrorCode.CONFIRMATION_TIMEOUT
        assert second.is_valid
        assert second.transaction_id == first.transaction_id == "0x" + f"{1:064x}"
        assert len(ledger.submitted) == 1
        assert len(ledger.balance_calls) == 1

    @pytest.mark.asyncio
    async def test_repeated_timeouts_never_resubmit(self, signer):
        ledger = FakeLedger(confirmation_delay=0.2)
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO, confirmation_timeout=0.05)
        challenge = make_challenge()
        proof = signer.sign(challenge)

        results = [await verifier.verify(proof, challenge) for _ in range(3)]

        assert {r.error_code for r in results} == {ErrorCode.CONFIRMATION_TIMEOUT}
        assert {r.transaction_id for r in results} == {"0x" + f"{1:064x}"}
        assert len(ledger.submitted) == 1

    @pytest.mark.asyncio
    async def test_polling_error_is_submission_failure(self, signer):
        ledger = FakeLedger()
        ledger.await_confirmation = AsyncMock(side_effect=LedgerError("node unavailable", 503))
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        result = await verifier.verify(signer.sign(challenge), challenge)

        assert result.error_code == ErrorCode.SUBMISSION_FAILED
        assert result.transaction_id == "0x" + f"{1:064x}"

    @pytest.mark.asyncio
    async def test_unsigned_transaction_not_submitted(self, signer):
        ledger = FakeLedger()
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()
        proof = signer.sign(challenge)
        tx = json.loads(proof.transaction)
        del tx["signature"]
        unsigned = proof.model_copy(update={"transaction": json.dumps(tx)})

        result = await verifier.verify(unsigned, challenge)

        assert result.error_code == ErrorCode.MALFORMED_PROOF
        assert ledger.submitted == []
        assert ledger.balance_calls == []

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, signer):
        ledger = FakeLedger(balance=10)
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()
        proof = signer.sign(challenge)

        await verifier.verify(proof, challenge)
        ledger.balance = 10**12
        result = await verifier.verify(proof, challenge)

        assert result.is_valid
        assert len(ledger.submitted) == 1

    @pytest.mark.asyncio
    async def test_invalid_proof_never_reaches_ledger(self, signer):
        ledger = FakeLedger()
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        proof = signer.sign(make_challenge(amount="1"))

        result = await verifier.verify(proof, make_challenge())

        assert result.error_code == ErrorCode.INSUFFICIENT_AMOUNT
        assert ledger.balance_calls == []

    @pytest.mark.asyncio
    async def test_unexpected_ledger_error(self, signer):
        ledger = FakeLedger()
        ledger.get_balance = MagicMock(side_effect=RuntimeError("node exploded"))
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        result = await verifier.verify(signer.sign(challenge), challenge)

        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert result.payer == signer.address

    @pytest.mark.asyncio
    async def test_balance_read_failure(self, signer):
        ledger = FakeLedger()
        ledger.get_balance = MagicMock(side_effect=LedgerError("view failed", 500))
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()

        result = await verifier.verify(signer.sign(challenge), challenge)

        assert result.error_code == ErrorCode.SUBMISSION_FAILED
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_lookup_uses_ledger(self, signer):
        ledger = FakeLedger()
        verifier = LiveLedgerVerifier(ledger, pay_to=PAY_TO)
        challenge = make_challenge()
        result = await verifier.verify(signer.sign(challenge), challenge)

        found = await verifier.lookup(result.transaction_id)

        assert found["confirmed"] is True
        assert await verifier.lookup("0x" + "f" * 64) is None

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            LiveLedgerVerifier(FakeLedger(), confirmation_timeout=0)


class TestSettlementCache:
    @pytest.mark.asyncio
    async def test_only_successes_cached(self):
        cache = SettlementCache()
        calls = []

        async def settle_fail():
            calls.append("fail")
            return VerificationResult.failure(ErrorCode.SUBMISSION_FAILED, "nope")

        async def settle_ok():
            calls.append("ok")
            return VerificationResult(is_valid=True, transaction_id="0xabc")

        await cache.run_once("k", settle_fail)
        assert cache.get("k") is None
        await cache.run_once("k", settle_ok)
        await cache.run_once("k", settle_ok)

        assert calls == ["fail", "ok"]
        assert cache.find_transaction("0xabc").is_valid

    @pytest.mark.asyncio
    async def test_exception_propagates_to_all_waiters(self):
        cache = SettlementCache()

        async def settle():
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            cache.run_once("k", settle), cache.run_once("k", settle), return_exceptions=True
        )

        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.get("k") is None

    @pytest.mark.asyncio
    async def test_records_evicted_after_expiry(self):
        now = [1_000]
        cache = SettlementCache(clock=lambda: now[0])

        async def settle():
            return VerificationResult(is_valid=True, transaction_id="0xabc")

        await cache.run_once("k", settle, expires_at=5_000)
        cache.record_submission("pending", "0xdef", expires_at=3_000)
        assert cache.get("k") is not None
        assert cache.submission("pending") == "0xdef"

        now[0] = 3_000
        assert cache.submission("pending") is None
        assert cache.find_transaction("0xabc") is not None

        now[0] = 5_000
        assert cache.get("k") is None
        assert cache.find_transaction("0xabc") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_confirmation_clears_pending_submission(self):
        cache = SettlementCache()
        cache.record_submission("k", "0xabc")

        async def settle():
            return VerificationResult(is_valid=True, transaction_id="0xabc")

        await cache.run_once("k", settle)

        assert cache.submission("k") is None
        assert cache.get("k").transaction_id == "0xabc"

    @pytest.mark.asyncio
    async def test_verifier_entries_expire_with_the_proof(self, signer):
        now = [now_ms()]
        validator = ProofValidator(pay_to=PAY_TO, clock=lambda: now[0])
        cache = SettlementCache(clock=lambda: now[0])
        verifier = SimulatedLedgerVerifier(validator=validator, cache=cache)
        challenge = make_challenge()
        proof = signer.sign(challenge)

        result = await verifier.verify(proof, challenge)
        assert len(cache) == 1

        now[0] += 10 * 60 * 1000
        assert len(cache) == 0
        assert cache.find_transaction(result.transaction_id) is None
        replay = await verifier.verify(proof, challenge)
        assert replay.error_code == ErrorCode.EXPIRED_CHALLENGE
