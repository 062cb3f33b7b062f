"""
Unit tests for the twisted ElGamal encryption engine.

Tests cover:
1. Keypair generation (random and seeded)
2. Encrypt/decrypt round trips
3. Homomorphic addition and subtraction
4. Amount range enforcement
5. Ciphertext serialization
"""

import pytest
import secrets

from ctcore.crypto import IDENTITY, BackendKind, get_backend, random_scalar, scalar_to_bytes
from ctcore.core.encryption import EncryptionEngine, discrete_log
from ctcore.core.errors import AmountOutOfRange
from ctcore.core.types import DECRYPTION_AMBIGUOUS, MAX_AMOUNT, Ciphertext, EncryptionKeypair


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def engine():
    return EncryptionEngine(get_backend(BackendKind.AUTO))


@pytest.fixture
def reference_engine():
    return EncryptionEngine(get_backend(BackendKind.REFERENCE))


@pytest.fixture
def keypair(engine):
    return engine.generate_keypair()


class TestKeypair:
    """Tests for keypair generation."""

    def test_public_key_is_valid_point(self, engine, keypair):
        valid, err = engine.validate_public_key(keypair.public_key)
        assert valid, err
        assert len(keypair.public_key) == 32

    def test_seeded_keypair_deterministic(self, engine):
        kp1 = engine.generate_keypair(seed=b"alice")
        kp2 = engine.generate_keypair(seed=b"alice")
        kp3 = engine.generate_keypair(seed=b"bob")
        assert kp1 == kp2
        assert kp1.public_key != kp3.public_key

    def test_random_keypairs_unique(self, engine):
        assert engine.generate_keypair().public_key != engine.generate_keypair().public_key

    def test_secret_hidden_from_repr_and_dict(self, keypair):
        assert str(keypair.secret_key) not in repr(keypair)
        assert "secret_key" not in keypair.to_dict()
        assert keypair.to_dict(include_secret=True)["secret_key"] == "0x" + keypair.secret_bytes.hex()

    def test_identity_public_key_rejected(self, engine):
        valid, err = engine.validate_public_key(IDENTITY)
        assert not valid
        assert "identity" in err

    def test_keypair_requires_32_byte_key(self):
        with pytest.raises(ValueError):
            EncryptionKeypair(public_key=b"\x01" * 31, secret_key=1)


class TestRoundTrip:
    """decrypt(encrypt(a)) == a for a in [0, 2^32)."""

    @pytest.mark.parametrize("amount", [0, 1, 2, 100, 65535, 65536, 1_000_000])
    def test_small_amounts(self, engine, keypair, amount):
        ct = engine.encrypt(amount, keypair.public_key)
        assert engine.decrypt(ct, keypair.secret_key) == amount

    def test_random_amounts(self, engine, keypair):
        for _ in range(3):
            amount = secrets.randbelow(2**32)
            ct = engine.encrypt(amount, keypair.public_key)
            assert engine.decrypt(ct, keypair.secret_key) == amount

    def test_upper_edge_of_bound(self, engine, keypair):
        amount = 2**32 - 1
        ct = engine.encrypt(amount, keypair.public_key)
        assert engine.decrypt(ct, keypair.secret_key) == amount

    def test_reference_backend_round_trip(self, reference_engine):
        kp = reference_engine.generate_keypair(seed=b"reference")
        ct = reference_engine.encrypt(4242, kp.public_key)
        assert reference_engine.decrypt(ct, kp.secret_key) == 4242

    def test_wrong_key_is_ambiguous(self, engine, keypair):
        other = engine.generate_keypair()
        ct = engine.encrypt(10, keypair.public_key)
        assert engine.decrypt(ct, other.secret_key) is DECRYPTION_AMBIGUOUS

    def test_beyond_bound_is_ambiguous(self, engine, keypair):
        """Representable but outside the searched range: unknown, not wrong."""
        small = EncryptionEngine(engine.backend, decrypt_bound_bits=16)
        ct = small.encrypt(2**16 + 5, keypair.public_key)
        assert small.decrypt(ct, keypair.secret_key) is DECRYPTION_AMBIGUOUS
        assert engine.decrypt(ct, keypair.secret_key) == 2**16 + 5

    def test_malformed_ciphertext_is_ambiguous(self, engine, reference_engine, keypair):
        garbage = Ciphertext(commitment=b"\xff" * 32, handle=b"\xff" * 32)
        assert engine.decrypt(garbage, keypair.secret_key) is DECRYPTION_AMBIGUOUS
        assert reference_engine.decrypt(garbage, keypair.secret_key) is DECRYPTION_AMBIGUOUS

    def test_malformed_handle_is_ambiguous(self, engine, keypair):
        ct = engine.encrypt(7, keypair.public_key)
        broken = Ciphertext(commitment=ct.commitment, handle=b"\xff" * 32)
        assert engine.decrypt(broken, keypair.secret_key) is DECRYPTION_AMBIGUOUS

    def test_max_amount_encrypts(self, engine, keypair):
        ct = engine.encrypt(MAX_AMOUNT, keypair.public_key)
        assert engine.decrypt(ct, keypair.secret_key) is DECRYPTION_AMBIGUOUS


class TestExplicitRandomness:
    """Explicit randomness gives reproducible ciphertexts."""

    def test_same_randomness_same_ciphertext(self, engine, keypair):
        r = random_scalar()
        assert engine.encrypt(5, keypair.public_key, r) == engine.encrypt(5, keypair.public_key, r)

    def test_bytes_randomness(self, engine, keypair):
        r = random_scalar()
        assert engine.encrypt(5, keypair.public_key, scalar_to_bytes(r)) == engine.encrypt(5, keypair.public_key, r)

    def test_opening_matches_commitment(self, engine, keypair):
        ct, r = engine.encrypt_with_opening(9, keypair.public_key)
        assert ct.commitment == engine.backend.commit(9, r)
        assert ct.handle == engine.backend.scalar_mult(r, keypair.public_key)

    def test_fresh_randomness_differs(self, engine, keypair):
        assert engine.encrypt(5, keypair.public_key) != engine.encrypt(5, keypair.public_key)


class TestAmountRange:
    """Amounts outside [0, 2^64) never encrypt."""

    @pytest.mark.parametrize("amount", [-1, 2**64, 2**70])
    def test_out_of_range(self, engine, keypair, amount):
        with pytest.raises(AmountOutOfRange):
            engine.encrypt(amount, keypair.public_key)

    def test_non_integer(self, engine, keypair):
        with pytest.raises(AmountOutOfRange):
            engine.encrypt(1.5, keypair.public_key)
        with pytest.raises(AmountOutOfRange):
            engine.encrypt(True, keypair.public_key)

    def test_amount_error_is_value_error(self, engine, keypair):
        with pytest.raises(ValueError):
            engine.encrypt(-5, keypair.public_key)

    def test_invalid_public_key(self, engine):
        with pytest.raises(ValueError):
            engine.encrypt(5, b"\x00" * 31)


class TestHomomorphism:
    """Ciphertext arithmetic under one key."""

    def test_subtract(self, engine, keypair):
        a = engine.encrypt(100, keypair.public_key)
        b = engine.encrypt(30, keypair.public_key)
        assert engine.decrypt(engine.subtract(a, b), keypair.secret_key) == 70

    def test_add(self, engine, keypair):
        a = engine.encrypt(100, keypair.public_key)
        b = engine.encrypt(30, keypair.public_key)
        assert engine.decrypt(engine.add(a, b), keypair.secret_key) == 130

    def test_subtract_random_pairs(self, engine, keypair):
        for _ in range(3):
            a = secrets.randbelow(2**32)
            b = secrets.randbelow(a + 1)
            diff = engine.subtract(engine.encrypt(a, keypair.public_key), engine.encrypt(b, keypair.public_key))
            assert engine.decrypt(diff, keypair.secret_key) == a - b

    def test_plain_amount_arithmetic(self, engine, keypair):
        ct = engine.encrypt(50, keypair.public_key)
        assert engine.decrypt(engine.add_amount(ct, 25), keypair.secret_key) == 75
        assert engine.decrypt(engine.subtract_amount(ct, 20), keypair.secret_key) == 30

    def test_trivial_ciphertext(self, engine, keypair):
        ct = engine.trivial_ciphertext(12)
        assert ct.handle == IDENTITY
        assert engine.decrypt(ct, keypair.secret_key) == 12

    def test_underflow_is_not_detected(self, engine, keypair):
        """Underflowed plaintexts wrap mod L and fall outside the search bound."""
        diff = engine.subtract(engine.encrypt(1, keypair.public_key), engine.encrypt(2, keypair.public_key))
        assert engine.decrypt(diff, keypair.secret_key) is DECRYPTION_AMBIGUOUS


class TestBatch:
    """encrypt_batch equals mapping encrypt."""

    def test_batch_decrypts(self, engine, keypair):
        amounts = [0, 1, 500, 65537, 2**31]
        cts = engine.encrypt_batch(amounts, keypair.public_key)
        assert [engine.decrypt(ct, keypair.secret_key) for ct in cts] == amounts

    def test_batch_rejects_bad_amount(self, engine, keypair):
        with pytest.raises(AmountOutOfRange):
            engine.encrypt_batch([1, -1], keypair.public_key)

    def test_empty_batch(self, engine, keypair):
        assert engine.encrypt_batch([], keypair.public_key) == []


class TestCiphertext:
    """Ciphertext container."""

    def test_bytes_roundtrip(self, engine, keypair):
        ct = engine.encrypt(7, keypair.public_key)
        assert Ciphertext.from_bytes(ct.to_bytes()) == ct
        assert len(ct.to_bytes()) == 64

    def test_dict_roundtrip(self, engine, keypair):
        ct = engine.encrypt(7, keypair.public_key)
        assert Ciphertext.from_dict(ct.to_dict()) == ct

    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            Ciphertext.from_bytes(b"\x00" * 63)

    def test_validate_ciphertext(self, engine, keypair):
        ct = engine.encrypt(7, keypair.public_key)
        assert engine.validate_ciphertext(ct) == (True, "")
        bad = Ciphertext(commitment=b"\xff" * 32, handle=ct.handle)
        valid, _ = engine.validate_ciphertext(bad)
        assert not valid


class TestDiscreteLog:
    """Bounded discrete log."""

    def test_finds_small_values(self, engine):
        for value in (0, 1, 70000):
            assert discrete_log(engine.backend, engine.backend.base_mult(value), 32) == value

    def test_returns_none_outside_bound(self, engine):
        assert discrete_log(engine.backend, engine.backend.base_mult(2**17), 16) is None

    def test_bound_below_table_rejected(self):
        with pytest.raises(ValueError):
            EncryptionEngine(decrypt_bound_bits=8)
