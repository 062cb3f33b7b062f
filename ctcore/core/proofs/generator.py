"""
Proof Generator - composite proofs for confidential transfers and withdrawals.

Transfer of `a` from a balance (C, D) under the sender key Ps:
    T_s = Enc(a; r_t) under Ps       encrypted_transfer_amount
    T_d = Enc(a; r_d) under Pd       destination_ciphertext
    N   = (C, D) - T_s               new source balance
    C'  = (b - a)*G + r'*H           fresh commitment to the new balance

    equality_proof      T_s and T_d hide the same amount
    validity_proof      N and C' hide the same amount (needs the sender secret)
    range_proof         C' in [0, 2^64)
    amount_range_proof  T_s.commitment in [0, 2^64)

Withdrawal of a public amount subtracts the trivial ciphertext (a*G, O)
and carries only the validity and range proofs.

Every result is assembled in full before it is returned; a failure at any
step leaves nothing behind.
"""

import time
from typing import Iterable, List, Optional, Tuple

from ctcore.crypto import CurveBackend, random_scalar
from ctcore.core.encryption import EncryptionEngine
from ctcore.core.errors import InsufficientBalance
from ctcore.core.proofs.range_proof import prove_range, verify_range
from ctcore.core.proofs.sigma import (
    prove_ciphertext_commitment_equality,
    prove_ciphertext_equality,
    verify_ciphertext_commitment_equality,
    verify_ciphertext_equality,
)
from ctcore.core.types import (
    DECRYPTION_AMBIGUOUS,
    Ciphertext,
    EncryptionKeypair,
    RangeProof,
    TransferProof,
    TransferProofResult,
    WithdrawProof,
    WithdrawProofResult,
)
from ctcore.utils.logger import get_logger

logger = get_logger("prover")


class ProofGenerator:
    """
    Builds and locally verifies range, transfer and withdraw proofs.

    Local verification is advisory; the on-chain verifier has the final say.
    """

    def __init__(self, engine: Optional[EncryptionEngine] = None):
        """
        Initialize generator.

        Args:
            engine: Encryption engine (a reference-backed one if omitted)
        """
        self.engine = engine or EncryptionEngine()

    @property
    def backend(self) -> CurveBackend:
        return self.engine.backend

    # -------------------------------------------------------------------------
    # Range proofs
    # -------------------------------------------------------------------------

    def generate_range_proof(self, amount: int, commitment: bytes, blinding: int) -> RangeProof:
        """
        Prove that `commitment` hides `amount` in [0, 2^64).

        Args:
            amount: Committed value
            commitment: amount*G + blinding*H
            blinding: Commitment opening

        Raises:
            AmountOutOfRange: amount not in [0, 2^64)
            ValueError: commitment does not open to (amount, blinding)
        """
        return prove_range(self.backend, amount, commitment, blinding)

    def generate_range_proofs(self, items: Iterable[Tuple[int, bytes, int]]) -> List[RangeProof]:
        """Range proofs for many (amount, commitment, blinding) triples."""
        return [self.generate_range_proof(*item) for item in items]

    def verify_range_proof(self, proof: RangeProof) -> bool:
        return verify_range(self.backend, proof)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _spendable(self, balance: Ciphertext, amount: int, keypair: EncryptionKeypair) -> int:
        """Decrypted balance, after checking it covers amount."""
        self.engine.check_amount(amount)
        current = self.engine.decrypt(balance, keypair.secret_key)
        if current is DECRYPTION_AMBIGUOUS:
            raise InsufficientBalance(amount, None)
        if current < amount:
            raise InsufficientBalance(amount, current)
        return current

    def _balance_proofs(
        self,
        new_balance: Ciphertext,
        new_amount: int,
        keypair: EncryptionKeypair,
    ) -> Tuple[bytes, RangeProof]:
        """Validity proof linking new_balance to a fresh commitment, plus its range proof."""
        opening = random_scalar()
        commitment = self.backend.commit(new_amount, opening)
        validity = prove_ciphertext_commitment_equality(
            self.backend,
            keypair.secret_key,
            keypair.public_key,
            new_balance,
            new_amount,
            commitment,
            opening,
        )
        range_proof = self.generate_range_proof(new_amount, commitment, opening)
        return validity.to_bytes(), range_proof

    def _check_balance_proofs(
        self,
        new_balance: Ciphertext,
        public_key: bytes,
        validity_proof: bytes,
        range_proof: RangeProof,
    ) -> Tuple[bool, str]:
        if not verify_ciphertext_commitment_equality(
            self.backend, public_key, new_balance, range_proof.commitment, validity_proof
        ):
            return False, "new balance does not match range-proof commitment"
        if not self.verify_range_proof(range_proof):
            return False, "new balance range proof failed"
        return True, ""

    # -------------------------------------------------------------------------
    # Transfer
    # -------------------------------------------------------------------------

    def generate_transfer_proof(
        self,
        source_balance: Ciphertext,
        amount: int,
        sender_keypair: EncryptionKeypair,
        dest_public_key: bytes,
    ) -> TransferProofResult:
        """
        Generate a transfer proof and the two derived ciphertexts.

        Args:
            source_balance: Sender's current available balance
            amount: Amount to move
            sender_keypair: Sender ElGamal keypair
            dest_public_key: Receiver ElGamal public key

        Returns:
            TransferProofResult

        Raises:
            AmountOutOfRange: amount not in [0, 2^64)
            InsufficientBalance: balance undecryptable or below amount
            ValueError: dest_public_key invalid
        """
        start = time.perf_counter()
        current = self._spendable(source_balance, amount, sender_keypair)

        transfer_ct, transfer_opening = self.engine.encrypt_with_opening(amount, sender_keypair.public_key)
        dest_ct, dest_opening = self.engine.encrypt_with_opening(amount, dest_public_key)
        new_balance = self.engine.subtract(source_balance, transfer_ct)

        equality = prove_ciphertext_equality(
            self.backend,
            amount,
            sender_keypair.public_key,
            transfer_ct,
            transfer_opening,
            dest_public_key,
            dest_ct,
            dest_opening,
        )
        validity, range_proof = self._balance_proofs(new_balance, current - amount, sender_keypair)
        amount_range_proof = self.generate_range_proof(amount, transfer_ct.commitment, transfer_opening)

        proof = TransferProof(
            encrypted_transfer_amount=transfer_ct,
            new_source_commitment=new_balance.commitment,
            equality_proof=equality.to_bytes(),
            validity_proof=validity,
            range_proof=range_proof,
            destination_ciphertext=dest_ct,
            amount_range_proof=amount_range_proof,
        )
        logger.debug(
            f"Transfer proof generated on {self.backend.name} in "
            f"{(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return TransferProofResult(
            transfer_proof=proof,
            new_source_balance=new_balance,
            dest_ciphertext=dest_ct,
        )

    def verify_transfer_proof(
        self,
        proof: TransferProof,
        source_balance: Ciphertext,
        source_public_key: bytes,
        dest_public_key: bytes,
    ) -> Tuple[bool, str]:
        """
        Check a transfer proof against the balance it spends from.

        Returns:
            (is_valid, error_message)
        """
        transfer_ct = proof.encrypted_transfer_amount
        dest_ct = proof.destination_ciphertext
        for name, ct in (("source balance", source_balance), ("transfer amount", transfer_ct),
                         ("destination", dest_ct)):
            valid, err = self.engine.validate_ciphertext(ct)
            if not valid:
                return False, f"{name}: {err}"

        new_balance = self.engine.subtract(source_balance, transfer_ct)
        if new_balance.commitment != proof.new_source_commitment:
            return False, "new source commitment is not old minus transferred"

        if not verify_ciphertext_equality(
            self.backend, source_public_key, transfer_ct, dest_public_key, dest_ct, proof.equality_proof
        ):
            return False, "equality proof failed"

        valid, err = self._check_balance_proofs(
            new_balance, source_public_key, proof.validity_proof, proof.range_proof
        )
        if not valid:
            return False, err

        if proof.amount_range_proof.commitment != transfer_ct.commitment:
            return False, "amount range proof is not over the transfer amount"
        if not self.verify_range_proof(proof.amount_range_proof):
            return False, "amount range proof failed"
        return True, ""

    # -------------------------------------------------------------------------
    # Withdraw
    # -------------------------------------------------------------------------

    def generate_withdraw_proof(
        self,
        balance: Ciphertext,
        amount: int,
        keypair: EncryptionKeypair,
    ) -> WithdrawProofResult:
        """
        Generate a withdraw proof for a public amount.

        Raises:
            AmountOutOfRange: amount not in [0, 2^64)
            InsufficientBalance: balance undecryptable or below amount
        """
        start = time.perf_counter()
        current = self._spendable(balance, amount, keypair)

        withdraw_ct = self.engine.trivial_ciphertext(amount)
        new_balance = self.engine.subtract(balance, withdraw_ct)
        validity, range_proof = self._balance_proofs(new_balance, current - amount, keypair)

        proof = WithdrawProof(
            encrypted_withdraw_amount=withdraw_ct,
            new_source_commitment=new_balance.commitment,
            equality_proof=validity,
            range_proof=range_proof,
        )
        logger.debug(
            f"Withdraw proof generated on {self.backend.name} in "
            f"{(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return WithdrawProofResult(withdraw_proof=proof, new_source_balance=new_balance)

    def verify_withdraw_proof(
        self,
        proof: WithdrawProof,
        balance: Ciphertext,
        public_key: bytes,
        amount: int,
    ) -> Tuple[bool, str]:
        """
        Check a withdraw proof for a public amount.

        Returns:
            (is_valid, error_message)
        """
        valid, err = self.engine.validate_ciphertext(balance)
        if not valid:
            return False, f"balance: {err}"
        try:
            expected = self.engine.trivial_ciphertext(amount)
        except ValueError as e:
            return False, str(e)
        if proof.encrypted_withdraw_amount != expected:
            return False, "encrypted withdraw amount does not encode the public amount"

        new_balance = self.engine.subtract(balance, expected)
        if new_balance.commitment != proof.new_source_commitment:
            return False, "new source commitment is not old minus withdrawn"

        return self._check_balance_proofs(new_balance, public_key, proof.equality_proof, proof.range_proof)
