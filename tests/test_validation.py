"""Tests for static proof validation."""

import json
import socket

import httpx
import pytest

from tests.mocks import OTHER_ADDRESS, PAY_TO, make_challenge
from x402_aptos import ErrorCode, PriceSpec, ProofValidator
from x402_aptos.mechanisms.aptos import LocalEd25519Signer
from x402_aptos.schemas import now_ms


@pytest.fixture
def validator():
    return ProofValidator(pay_to=PAY_TO)


def tamper_transaction(proof, **payload_changes):
    tx = json.loads(proof.transaction)
    tx["payload"].update(payload_changes)
    return proof.model_copy(update={"transaction": json.dumps(tx)})


class TestValidProofs:
    def test_valid_against_challenge(self, validator, signer):
        challenge = make_challenge()
        outcome = validator.validate(signer.sign(challenge), challenge)

        assert outcome.ok
        assert outcome.details.amount == 1_000_000
        assert outcome.details.sender == signer.address

    def test_valid_against_price(self, validator, signer, weather_price):
        outcome = validator.validate(signer.sign(make_challenge()), weather_price)
        assert outcome.ok

    def test_overpayment_accepted(self, validator, signer, weather_price):
        outcome = validator.validate(signer.sign(make_challenge(amount="2000000")), weather_price)
        assert outcome.ok

    def test_uses_echoed_challenge_without_requirement(self, signer):
        validator = ProofValidator()
        proof = signer.sign(make_challenge(recipient=OTHER_ADDRESS))
        assert validator.validate(proof).ok

    def test_accepts_dict_and_json(self, validator, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)
        assert validator.validate(proof.model_dump(by_alias=True), challenge).ok
        assert validator.validate(proof.to_header(), challenge).ok


class TestStructure:
    def test_missing_fields(self, validator):
        outcome = validator.validate({"transaction": "{}", "signature": "0x00"})
        assert outcome.code == ErrorCode.MALFORMED_PROOF

    def test_transaction_not_json(self, validator, signer):
        proof = signer.sign(make_challenge()).model_copy(update={"transaction": "not json"})
        outcome = validator.validate(proof, make_challenge())
        assert outcome.code == ErrorCode.MALFORMED_PROOF

    def test_unsupported_transfer_function(self, validator, signer):
        proof = tamper_transaction(signer.sign(make_challenge()), function="0x1::other::mint")
        assert validator.validate(proof).code == ErrorCode.MALFORMED_PROOF

    def test_bad_address(self, validator, signer):
        proof = signer.sign(make_challenge()).model_copy(update={"address": "not-an-address"})
        assert validator.validate(proof).code == ErrorCode.MALFORMED_PROOF

    def test_timestamp_in_future(self, validator, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)
        proof = proof.model_copy(update={"timestamp": now_ms() + 120_000})
        assert validator.validate(proof, challenge).code == ErrorCode.MALFORMED_PROOF


class TestDeadlines:
    def test_expired_challenge_is_not_malformed(self, validator, signer):
        challenge = make_challenge(deadline_offset_ms=-600_000)
        proof = signer.sign(challenge)

        outcome = validator.validate(proof, challenge)

        assert not outcome.ok
        assert outcome.code == ErrorCode.EXPIRED_CHALLENGE

    def test_echoed_expired_challenge_against_price(self, validator, signer, weather_price):
        proof = signer.sign(make_challenge(deadline_offset_ms=-600_000))
        assert validator.validate(proof, weather_price).code == ErrorCode.EXPIRED_CHALLENGE

    def test_expired_transaction(self, validator, signer, weather_price):
        proof = signer.sign(make_challenge(deadline_offset_ms=-1_000))
        proof = proof.model_copy(update={"challenge": None})
        assert validator.validate(proof, weather_price).code == ErrorCode.EXPIRED_CHALLENGE

    def test_stale_proof(self, validator, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)
        proof = proof.model_copy(update={"timestamp": now_ms() - 301_000})
        assert validator.validate(proof, challenge).code == ErrorCode.EXPIRED_CHALLENGE

    def test_injected_clock(self, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)
        later = ProofValidator(pay_to=PAY_TO, clock=lambda: challenge.deadline + 1)
        assert later.validate(proof, challenge).code == ErrorCode.EXPIRED_CHALLENGE


class TestAmount:
    def test_shortfall(self, validator, signer, weather_price):
        proof = signer.sign(make_challenge(amount="999999"))
        outcome = validator.validate(proof, weather_price)
        assert outcome.code == ErrorCode.INSUFFICIENT_AMOUNT
        assert "999999" in outcome.reason

    def test_wrong_asset(self, validator, signer, weather_price):
        proof = signer.sign(make_challenge(token="0x1::usdc::USDC"))
        assert validator.validate(proof, weather_price).code == ErrorCode.INSUFFICIENT_AMOUNT

    def test_asset_address_forms_are_equivalent(self, validator, signer):
        spec = PriceSpec(pattern="GET /weather", amount="1000000")
        long_form = "0x" + "0" * 63 + "1::aptos_coin::AptosCoin"
        proof = signer.sign(make_challenge(token=long_form))
        assert validator.validate(proof, spec).ok


class TestRecipient:
    def test_wrong_recipient_against_price(self, validator, signer, weather_price):
        proof = signer.sign(make_challenge(recipient=OTHER_ADDRESS))
        assert validator.validate(proof, weather_price).code == ErrorCode.WRONG_RECIPIENT

    def test_wrong_recipient_against_challenge(self, validator, signer):
        proof = signer.sign(make_challenge(recipient=OTHER_ADDRESS))
        outcome = validator.validate(proof, make_challenge())
        assert outcome.code == ErrorCode.WRONG_RECIPIENT

    def test_short_address_form_matches(self, signer, weather_price):
        validator = ProofValidator(pay_to="0x1")
        proof = signer.sign(make_challenge(recipient="0x1"))
        assert validator.validate(proof, weather_price).ok


class TestSignatureBinding:
    def test_invalid_signature(self, validator, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge).model_copy(update={"signature": "0x" + "00" * 64})
        assert validator.validate(proof, challenge).code == ErrorCode.SIGNATURE_REJECTED

    def test_tampered_amount(self, validator, signer):
        challenge = make_challenge()
        proof = tamper_transaction(signer.sign(challenge), arguments=[PAY_TO, "5000000"])
        assert validator.validate(proof, challenge).code == ErrorCode.SIGNATURE_REJECTED

    def test_key_not_owned_by_address(self, validator, signer):
        challenge = make_challenge()
        other = LocalEd25519Signer.generate()
        proof = signer.sign(challenge).model_copy(update={"public_key": other.public_key})
        assert validator.validate(proof, challenge).code == ErrorCode.SIGNATURE_REJECTED

    def test_sender_differs_from_address(self, validator, signer):
        challenge = make_challenge()
        other = LocalEd25519Signer.generate()
        proof = signer.sign(challenge).model_copy(
            update={"address": other.address, "public_key": other.public_key}
        )
        assert validator.validate(proof, challenge).code == ErrorCode.SIGNATURE_REJECTED

    def test_authenticator_key_mismatch(self, validator, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)
        tx = json.loads(proof.transaction)
        tx["signature"]["public_key"] = LocalEd25519Signer.generate().public_key
        proof = proof.model_copy(update={"transaction": json.dumps(tx)})
        assert validator.validate(proof, challenge).code == ErrorCode.SIGNATURE_REJECTED

    def test_signature_ignores_json_formatting(self, validator, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge)
        tx = json.loads(proof.transaction)
        reformatted = json.dumps(dict(reversed(list(tx.items()))), indent=2)
        proof = proof.model_copy(update={"transaction": reformatted})
        assert validator.validate(proof, challenge).ok

    def test_garbage_public_key(self, validator, signer):
        challenge = make_challenge()
        proof = signer.sign(challenge).model_copy(update={"public_key": "0xzz"})
        assert validator.validate(proof, challenge).code == ErrorCode.SIGNATURE_REJECTED


class TestOrdering:
    def test_expiry_reported_before_amount(self, validator, signer, weather_price):
        proof = signer.sign(make_challenge(amount="1", deadline_offset_ms=-600_000))
        assert validator.validate(proof, weather_price).code == ErrorCode.EXPIRED_CHALLENGE

    def test_amount_reported_before_recipient(self, validator, signer, weather_price):
        proof = signer.sign(make_challenge(amount="1", recipient=OTHER_ADDRESS))
        assert validator.validate(proof, weather_price).code == ErrorCode.INSUFFICIENT_AMOUNT


class TestNoNetwork:
    def test_validation_never_touches_the_network(self, monkeypatch, validator, signer):
        def no_network(*args, **kwargs):
            raise AssertionError("network access during validation")

        challenge = make_challenge()
        proof = signer.sign(challenge)

        monkeypatch.setattr(socket, "socket", no_network)
        monkeypatch.setattr(socket, "create_connection", no_network)
        monkeypatch.setattr(httpx.Client, "send", no_network)
        monkeypatch.setattr(httpx.AsyncClient, "send", no_network)

        assert validator.validate(proof, challenge).ok
        assert validator.validate(proof, make_challenge(amount="2000000")).code == (
            ErrorCode.INSUFFICIENT_AMOUNT
        )


class TestReplayDeadline:
    def _validator_at(self, now):
        return ProofValidator(pay_to=PAY_TO, clock=lambda: now)

    def test_transaction_expiration_bounds_deadline(self, signer):
        challenge = make_challenge(deadline_offset_ms=60_000)
        proof = signer.sign(challenge)
        transfer = ProofValidator(pay_to=PAY_TO).validate(proof, challenge).details

        deadline = ProofValidator(pay_to=PAY_TO).replay_deadline(proof, transfer)

        assert deadline == transfer.expiration_timestamp_secs * 1000
        assert self._validator_at(deadline - 1).validate(proof, challenge).ok
        assert self._validator_at(deadline).validate(proof, challenge).code == (
            ErrorCode.EXPIRED_CHALLENGE
        )

    def test_proof_window_bounds_deadline(self, signer):
        challenge = make_challenge(deadline_offset_ms=10 * 3600 * 1000)
        proof = signer.sign(challenge)
        transfer = ProofValidator(pay_to=PAY_TO).validate(proof, challenge).details

        deadline = ProofValidator(pay_to=PAY_TO).replay_deadline(proof, transfer)

        assert deadline == proof.timestamp + 300_000 + 1
        assert self._validator_at(deadline - 1).validate(proof, challenge).ok
        assert self._validator_at(deadline).validate(proof, challenge).code == (
            ErrorCode.EXPIRED_CHALLENGE
        )
