"""
Unit tests for the proof primitives.

Tests cover:
1. Range proofs at the u64 boundaries
2. Range proof tampering and commitment mismatch
3. Ciphertext-ciphertext equality proofs
4. Ciphertext-commitment equality proofs
"""

import pytest

from ctcore.crypto import BackendKind, get_backend, random_scalar
from ctcore.core.encryption import EncryptionEngine
from ctcore.core.errors import AmountOutOfRange
from ctcore.core.proofs import (
    CiphertextCommitmentEqualityProof,
    CiphertextEqualityProof,
    ProofGenerator,
    prove_ciphertext_commitment_equality,
    prove_ciphertext_equality,
    prove_range,
    verify_ciphertext_commitment_equality,
    verify_ciphertext_equality,
    verify_range,
)
from ctcore.core.types import (
    CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE,
    CIPHERTEXT_EQUALITY_PROOF_SIZE,
    MAX_AMOUNT,
    RANGE_PROOF_SIZE,
    RangeProof,
)


def _flip(data: bytes, index: int) -> bytes:
    out = bytearray(data)
    out[index] ^= 0x01
    return bytes(out)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def backend():
    return get_backend(BackendKind.AUTO)


@pytest.fixture
def engine(backend):
    return EncryptionEngine(backend)


@pytest.fixture
def prover(engine):
    return ProofGenerator(engine)


def _committed(backend, amount):
    r = random_scalar()
    return backend.commit(amount, r), r


class TestRangeProof:
    """Range proofs accept exactly the values in [0, 2^64)."""

    @pytest.mark.parametrize("amount", [0, 1, 2**32, MAX_AMOUNT])
    def test_boundaries_verify(self, backend, amount):
        commitment, r = _committed(backend, amount)
        proof = prove_range(backend, amount, commitment, r)
        assert verify_range(backend, proof)

    def test_serialized_size(self, backend):
        commitment, r = _committed(backend, 123)
        proof = prove_range(backend, 123, commitment, r)
        data = proof.to_bytes()
        assert len(data) == RANGE_PROOF_SIZE
        assert verify_range(backend, RangeProof.from_bytes(data))

    @pytest.mark.parametrize("amount", [-1, 2**64])
    def test_out_of_range_amount_rejected(self, backend, amount):
        commitment, r = _committed(backend, 0)
        with pytest.raises(AmountOutOfRange):
            prove_range(backend, amount, commitment, r)

    def test_wrong_opening_rejected(self, backend):
        commitment, r = _committed(backend, 10)
        with pytest.raises(ValueError):
            prove_range(backend, 11, commitment, r)

    def test_commitment_swap_fails(self, backend):
        """A valid proof does not transfer to a different commitment."""
        commitment, r = _committed(backend, 55)
        proof = prove_range(backend, 55, commitment, r)
        other, _ = _committed(backend, 55)
        assert not verify_range(backend, RangeProof(commitment=other, proof=proof.proof))

    @pytest.mark.parametrize("index", [0, 40, 70, 127, 64 * 128 - 1])
    def test_tampered_body_fails(self, backend, index):
        commitment, r = _committed(backend, 99)
        proof = prove_range(backend, 99, commitment, r)
        tampered = RangeProof(commitment=commitment, proof=_flip(proof.proof, index))
        assert not verify_range(backend, tampered)

    def test_invalid_commitment_point_fails(self, backend):
        commitment, r = _committed(backend, 1)
        proof = prove_range(backend, 1, commitment, r)
        assert not verify_range(backend, RangeProof(commitment=b"\xff" * 32, proof=proof.proof))

    def test_reference_backend_verifies(self):
        reference = get_backend(BackendKind.REFERENCE)
        commitment, r = _committed(reference, 2**63 + 7)
        proof = prove_range(reference, 2**63 + 7, commitment, r)
        assert verify_range(reference, proof)

    def test_generator_batch(self, prover, backend):
        items = []
        for amount in (5, 6):
            commitment, r = _committed(backend, amount)
            items.append((amount, commitment, r))
        proofs = prover.generate_range_proofs(items)
        assert len(proofs) == 2
        assert all(prover.verify_range_proof(p) for p in proofs)


class TestCiphertextEquality:
    """Ciphertext-ciphertext equality proofs."""

    @pytest.fixture
    def setup(self, engine, backend):
        first_kp = engine.generate_keypair()
        second_kp = engine.generate_keypair()
        first, r1 = engine.encrypt_with_opening(42, first_kp.public_key)
        second, r2 = engine.encrypt_with_opening(42, second_kp.public_key)
        proof = prove_ciphertext_equality(
            backend, 42, first_kp.public_key, first, r1, second_kp.public_key, second, r2
        )
        return first_kp, second_kp, first, second, proof

    def test_valid_proof(self, backend, setup):
        first_kp, second_kp, first, second, proof = setup
        data = proof.to_bytes()
        assert len(data) == CIPHERTEXT_EQUALITY_PROOF_SIZE
        assert verify_ciphertext_equality(backend, first_kp.public_key, first, second_kp.public_key, second, data)

    def test_bytes_roundtrip(self, setup):
        proof = setup[4]
        assert CiphertextEqualityProof.from_bytes(proof.to_bytes()) == proof

    def test_swapped_keys_fail(self, backend, setup):
        first_kp, second_kp, first, second, proof = setup
        assert not verify_ciphertext_equality(
            backend, second_kp.public_key, first, first_kp.public_key, second, proof.to_bytes()
        )

    @pytest.mark.parametrize("index", [0, 100, 130, 200])
    def test_tampered_proof_fails(self, backend, setup, index):
        first_kp, second_kp, first, second, proof = setup
        assert not verify_ciphertext_equality(
            backend, first_kp.public_key, first, second_kp.public_key, second, _flip(proof.to_bytes(), index)
        )

    def test_different_amounts_fail(self, engine, backend):
        first_kp = engine.generate_keypair()
        second_kp = engine.generate_keypair()
        first, r1 = engine.encrypt_with_opening(42, first_kp.public_key)
        second, r2 = engine.encrypt_with_opening(43, second_kp.public_key)
        proof = prove_ciphertext_equality(
            backend, 42, first_kp.public_key, first, r1, second_kp.public_key, second, r2
        )
        assert not verify_ciphertext_equality(
            backend, first_kp.public_key, first, second_kp.public_key, second, proof.to_bytes()
        )

    def test_truncated_proof_fails(self, backend, setup):
        first_kp, second_kp, first, second, proof = setup
        assert not verify_ciphertext_equality(
            backend, first_kp.public_key, first, second_kp.public_key, second, proof.to_bytes()[:-1]
        )


class TestCiphertextCommitmentEquality:
    """Ciphertext-commitment equality proofs."""

    @pytest.fixture
    def setup(self, engine, backend):
        kp = engine.generate_keypair()
        ct = engine.encrypt(500, kp.public_key)
        opening = random_scalar()
        commitment = backend.commit(500, opening)
        proof = prove_ciphertext_commitment_equality(
            backend, kp.secret_key, kp.public_key, ct, 500, commitment, opening
        )
        return kp, ct, commitment, proof

    def test_valid_proof(self, backend, setup):
        kp, ct, commitment, proof = setup
        data = proof.to_bytes()
        assert len(data) == CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE
        assert verify_ciphertext_commitment_equality(backend, kp.public_key, ct, commitment, data)

    def test_bytes_roundtrip(self, setup):
        proof = setup[3]
        assert CiphertextCommitmentEqualityProof.from_bytes(proof.to_bytes()) == proof

    def test_other_commitment_fails(self, backend, setup):
        kp, ct, _, proof = setup
        other = backend.commit(500, random_scalar())
        assert not verify_ciphertext_commitment_equality(backend, kp.public_key, ct, other, proof.to_bytes())

    def test_mismatched_amount_fails(self, engine, backend):
        kp = engine.generate_keypair()
        ct = engine.encrypt(500, kp.public_key)
        opening = random_scalar()
        commitment = backend.commit(501, opening)
        proof = prove_ciphertext_commitment_equality(
            backend, kp.secret_key, kp.public_key, ct, 501, commitment, opening
        )
        assert not verify_ciphertext_commitment_equality(backend, kp.public_key, ct, commitment, proof.to_bytes())

    def test_wrong_key_fails(self, engine, backend, setup):
        _, ct, commitment, proof = setup
        other = engine.generate_keypair()
        assert not verify_ciphertext_commitment_equality(backend, other.public_key, ct, commitment, proof.to_bytes())

    def test_non_canonical_scalar_fails(self, backend, setup):
        kp, ct, commitment, proof = setup
        data = proof.to_bytes()[:-32] + b"\xff" * 32
        assert not verify_ciphertext_commitment_equality(backend, kp.public_key, ct, commitment, data)
