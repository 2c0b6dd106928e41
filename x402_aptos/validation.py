"""Static validation of payment proofs.

Everything here is pure and synchronous: no ledger access, no I/O.
Checks run in a fixed order and stop at the first failure:

    1. Structure          -> MALFORMED_PROOF
    2. Deadlines          -> EXPIRED_CHALLENGE
    3. Amount and asset   -> INSUFFICIENT_AMOUNT
    4. Recipient          -> WRONG_RECIPIENT
    5. Signature binding  -> SIGNATURE_REJECTED
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from .interfaces import Requirement
from .mechanisms.aptos.transaction import (
    TransferTransaction,
    addresses_equal,
    decode_transfer,
    derive_address,
    normalize_address,
    normalize_asset,
    signing_message,
    verify_signature,
)
from .schemas import (
    DEFAULT_CHALLENGE_WINDOW_SECONDS,
    Challenge,
    ErrorCode,
    MalformedProofError,
    PaymentProof,
    PriceSpec,
    ValidationOutcome,
    now_ms,
)

DEFAULT_CLOCK_SKEW_SECONDS = 60


def parse_proof(proof: PaymentProof | dict[str, Any] | str | bytes) -> PaymentProof:
    """Coerce a proof from a model, dict, or JSON text.

    Raises:
        MalformedProofError: If the value is not a structurally valid proof.
    """
    if isinstance(proof, PaymentProof):
        return proof
    try:
        if isinstance(proof, (str, bytes)):
            return PaymentProof.model_validate_json(proof)
        return PaymentProof.model_validate(proof)
    except ValidationError as e:
        raise MalformedProofError(f"Invalid payment proof: {e.error_count()} field error(s)") from e


class ProofValidator:
    """Validates a proof against a challenge or a route price.

    When given a PriceSpec, the recipient is checked against the
    validator's configured ``pay_to``. When given nothing, the challenge
    echoed inside the proof (if any) is used.
    """

    def __init__(
        self,
        pay_to: str | None = None,
        window_seconds: int = DEFAULT_CHALLENGE_WINDOW_SECONDS,
        clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._pay_to = pay_to
        self._window_ms = window_seconds * 1000
        self._skew_ms = clock_skew_seconds * 1000
        self._clock = clock

    @property
    def pay_to(self) -> str | None:
        return self._pay_to

    def validate(
        self,
        proof: PaymentProof | dict[str, Any] | str,
        requirement: Requirement = None,
    ) -> ValidationOutcome:
        """Validate ``proof``.

        Args:
            proof: Proof model, dict, or JSON text.
            requirement: Challenge the proof answers, route price, or None.

        Returns:
            ValidationOutcome. On success ``details`` is the decoded
            TransferTransaction.
        """
        # 1. Structure
        try:
            proof = parse_proof(proof)
            transfer = decode_transfer(proof.transaction)
            normalize_address(proof.address)
        except (MalformedProofError, ValueError) as e:
            reason = e.message if isinstance(e, MalformedProofError) else f"Malformed proof: {e}"
            return ValidationOutcome.failure(ErrorCode.MALFORMED_PROOF, reason)

        challenge = requirement if isinstance(requirement, Challenge) else proof.challenge
        now = self._clock()

        # 2. Deadlines
        outcome = self._check_deadlines(proof, transfer, challenge, now)
        if outcome is not None:
            return outcome

        # 3. Amount and asset
        required = requirement if requirement is not None else challenge
        if required is not None:
            outcome = self._check_amount(transfer, required)
            if outcome is not None:
                return outcome

        # 4. Recipient
        expected = challenge.recipient if isinstance(requirement, Challenge) else self._pay_to
        if expected is None and challenge is not None:
            expected = challenge.recipient
        if expected is not None and not addresses_equal(transfer.recipient, expected):
            return ValidationOutcome.failure(
                ErrorCode.WRONG_RECIPIENT,
                f"Payment sent to {transfer.recipient}, expected {expected}",
            )

        # 5. Signature binding
        outcome = self._check_signature(proof, transfer)
        if outcome is not None:
            return outcome

        return ValidationOutcome.success(transfer)

    def replay_deadline(self, proof: PaymentProof, transfer: TransferTransaction) -> int:
        """Epoch ms from which ``validate`` rejects this proof as expired.

        Records kept to stop a proof settling or admitting twice can be
        dropped after this point.
        """
        deadline = proof.timestamp + self._window_ms + 1
        expiration = transfer.expiration_timestamp_secs
        if expiration is not None:
            deadline = min(deadline, expiration * 1000)
        return deadline

    def _check_deadlines(
        self,
        proof: PaymentProof,
        transfer: TransferTransaction,
        challenge: Challenge | None,
        now: int,
    ) -> ValidationOutcome | None:
        if proof.timestamp > now + self._skew_ms:
            return ValidationOutcome.failure(
                ErrorCode.MALFORMED_PROOF, "Proof timestamp is in the future"
            )
        if challenge is not None and challenge.is_expired(now):
            return ValidationOutcome.failure(
                ErrorCode.EXPIRED_CHALLENGE, "Challenge deadline has passed"
            )
        expiration = transfer.expiration_timestamp_secs
        if expiration is not None and expiration * 1000 <= now:
            return ValidationOutcome.failure(
                ErrorCode.EXPIRED_CHALLENGE, "Transaction expiration has passed"
            )
        if proof.timestamp < now - self._window_ms:
            return ValidationOutcome.failure(ErrorCode.EXPIRED_CHALLENGE, "Proof is too old")
        return None

    @staticmethod
    def _check_amount(
        transfer: TransferTransaction,
        required: Challenge | PriceSpec,
    ) -> ValidationOutcome | None:
        asset = required.asset.address
        if normalize_asset(asset) != transfer.asset:
            return ValidationOutcome.failure(
                ErrorCode.INSUFFICIENT_AMOUNT,
                f"Payment is in {transfer.asset}, {asset} required",
            )
        if transfer.amount < required.amount_int:
            return ValidationOutcome.failure(
                ErrorCode.INSUFFICIENT_AMOUNT,
                f"Payment of {transfer.amount} is below the required {required.amount}",
            )
        return None

    @staticmethod
    def _check_signature(
        proof: PaymentProof,
        transfer: TransferTransaction,
    ) -> ValidationOutcome | None:
        try:
            derived = derive_address(proof.public_key)
        except ValueError:
            return ValidationOutcome.failure(
                ErrorCode.SIGNATURE_REJECTED, "Public key is not a valid Ed25519 key"
            )
        if not addresses_equal(derived, proof.address):
            return ValidationOutcome.failure(
                ErrorCode.SIGNATURE_REJECTED, "Public key does not belong to the paying address"
            )
        if not addresses_equal(proof.address, transfer.sender):
            return ValidationOutcome.failure(
                ErrorCode.SIGNATURE_REJECTED, "Transaction was not sent by the paying address"
            )
        auth_key = transfer.authenticator_public_key
        if auth_key is not None and _strip_hex(auth_key) != _strip_hex(proof.public_key):
            return ValidationOutcome.failure(
                ErrorCode.SIGNATURE_REJECTED,
                "Transaction authenticator does not match the proof key",
            )
        if not verify_signature(proof.public_key, proof.signature, signing_message(transfer.raw)):
            return ValidationOutcome.failure(ErrorCode.SIGNATURE_REJECTED, "Invalid signature")
        return None


def _strip_hex(value: str) -> str:
    return value.strip().lower().removeprefix("0x")
