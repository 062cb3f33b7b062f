"""
Encryption Engine - twisted ElGamal on Edwards25519.

Scheme (secret s, public P = s^-1 * H):
    Enc(a; r)  = (C, D) = (a*G + r*H, r*P)
    Dec(C, D)  = dlog_G(C - s*D)

C is a Pedersen commitment to a, which is what the proofs are checked
against. Ciphertexts under one key add and subtract componentwise.

Decryption solves a bounded discrete log with baby-step giant-step: a table
of j*G for j < 2^16 is built once per backend and shared, then giant steps
of 2^16*G are walked in chunks. Anything outside [0, 2^bound_bits) comes
back as DECRYPTION_AMBIGUOUS.
"""

from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ctcore.crypto import (
    IDENTITY,
    G_BYTES,
    BackendKind,
    CurveBackend,
    coerce_scalar,
    get_backend,
    hash_to_scalar,
    random_scalar,
    scalar_inverse,
)
from ctcore.core.errors import AmountOutOfRange
from ctcore.core.types import (
    DECRYPTION_AMBIGUOUS,
    Ciphertext,
    DecryptionResult,
    EncryptionKeypair,
)
from ctcore.utils.logger import get_logger
from ctcore.utils.validation import validate_amount, validate_batch, validate_point

logger = get_logger("engine")

BABY_STEP_BITS = 16
GIANT_STEP_CHUNK = 256
KEYPAIR_DOMAIN = b"ctcore/elgamal-keypair/v1"

Randomness = Union[int, bytes]


# =============================================================================
# Discrete Log
# =============================================================================


@lru_cache(maxsize=4)
def _baby_steps(backend: CurveBackend) -> Dict[bytes, int]:
    logger.debug(f"Building 2^{BABY_STEP_BITS} baby-step table on {backend.name}")
    points = backend.arithmetic_walk(IDENTITY, G_BYTES, 1 << BABY_STEP_BITS)
    return {point: j for j, point in enumerate(points)}


def discrete_log(backend: CurveBackend, target: bytes, bound_bits: int) -> Optional[int]:
    """
    Find a in [0, 2^bound_bits) with a*G == target, or None.

    Args:
        backend: Curve backend
        target: Encoded point
        bound_bits: Search bound (>= 16)
    """
    table = _baby_steps(backend)
    m = 1 << BABY_STEP_BITS
    giant_steps = 1 << max(bound_bits - BABY_STEP_BITS, 0)
    stride = backend.negate(backend.base_mult(m))

    start = target
    done = 0
    while done < giant_steps:
        count = min(GIANT_STEP_CHUNK, giant_steps - done)
        walk = backend.arithmetic_walk(start, stride, count)
        for i, point in enumerate(walk):
            j = table.get(point)
            if j is not None:
                return (done + i) * m + j
        start = backend.add(walk[-1], stride)
        done += count
    return None


# =============================================================================
# Engine
# =============================================================================


class EncryptionEngine:
    """
    Keypair generation, encryption, decryption and homomorphic arithmetic.

    Stateless apart from the backend handle; safe to share between threads
    as long as callers pass their own keys and ciphertexts.
    """

    def __init__(
        self,
        backend: Optional[CurveBackend] = None,
        decrypt_bound_bits: int = 32,
    ):
        """
        Initialize engine.

        Args:
            backend: Curve backend (defaults to the pure-Python reference)
            decrypt_bound_bits: Decryption searches [0, 2^bits)
        """
        if decrypt_bound_bits < BABY_STEP_BITS:
            raise ValueError(f"decrypt_bound_bits must be >= {BABY_STEP_BITS}")
        self.backend = backend or get_backend(BackendKind.REFERENCE)
        self.decrypt_bound_bits = decrypt_bound_bits

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def generate_keypair(self, seed: Optional[bytes] = None) -> EncryptionKeypair:
        """
        Generate a keypair.

        Args:
            seed: If given, the keypair is derived deterministically from it

        Returns:
            EncryptionKeypair
        """
        if seed is None:
            secret = random_scalar()
        else:
            secret = hash_to_scalar(KEYPAIR_DOMAIN, bytes(seed))
            if secret == 0:
                raise ValueError("Seed hashes to the zero scalar")
        return EncryptionKeypair(public_key=self.public_key_for(secret), secret_key=secret)

    def public_key_for(self, secret: int) -> bytes:
        """P = s^-1 * H"""
        return self.backend.blinding_mult(scalar_inverse(secret))

    def validate_public_key(self, public_key: bytes) -> Tuple[bool, str]:
        valid, err = validate_point(public_key, "public_key")
        if not valid:
            return False, err
        if public_key == IDENTITY:
            return False, "public_key is the identity"
        if not self.backend.is_valid_point(public_key):
            return False, "public_key is not a valid subgroup point"
        return True, ""

    def _require_public_key(self, public_key: bytes) -> None:
        valid, err = self.validate_public_key(public_key)
        if not valid:
            raise ValueError(err)

    def validate_ciphertext(self, ciphertext: Ciphertext) -> Tuple[bool, str]:
        if not isinstance(ciphertext, Ciphertext):
            return False, f"ciphertext must be Ciphertext, got {type(ciphertext).__name__}"
        if not self.backend.is_valid_point(ciphertext.commitment):
            return False, "ciphertext commitment is not a valid point"
        if not self.backend.is_valid_point(ciphertext.handle):
            return False, "ciphertext handle is not a valid point"
        return True, ""

    # -------------------------------------------------------------------------
    # Encryption
    # -------------------------------------------------------------------------

    @staticmethod
    def check_amount(amount: int, name: str = "amount") -> int:
        """Raise AmountOutOfRange unless amount is an int in [0, 2^64)."""
        valid, err = validate_amount(amount, name)
        if not valid:
            raise AmountOutOfRange(err)
        return amount

    def encrypt_with_opening(
        self,
        amount: int,
        public_key: bytes,
        randomness: Optional[Randomness] = None,
    ) -> Tuple[Ciphertext, int]:
        """
        Encrypt and also return the randomness r (the commitment opening).

        Raises:
            AmountOutOfRange: amount not in [0, 2^64)
        """
        self.check_amount(amount)
        self._require_public_key(public_key)
        r = random_scalar() if randomness is None else coerce_scalar(randomness)
        ciphertext = Ciphertext(
            commitment=self.backend.commit(amount, r),
            handle=self.backend.scalar_mult(r, public_key),
        )
        return ciphertext, r

    def encrypt(
        self,
        amount: int,
        public_key: bytes,
        randomness: Optional[Randomness] = None,
    ) -> Ciphertext:
        """
        Encrypt a u64 amount.

        Args:
            amount: Value in [0, 2^64)
            public_key: Recipient ElGamal key
            randomness: Explicit r (int or 32 bytes), fresh if omitted

        Raises:
            AmountOutOfRange: amount not in [0, 2^64)
        """
        return self.encrypt_with_opening(amount, public_key, randomness)[0]

    def encrypt_batch(self, amounts: Iterable[int], public_key: bytes) -> List[Ciphertext]:
        """
        Encrypt many amounts under one key.

        Equivalent to mapping encrypt(), but the key gets a fixed-base
        table so each handle costs additions only.
        """
        amounts = list(amounts)
        valid, err = validate_batch(amounts, "amounts")
        if not valid:
            raise ValueError(err)
        for amount in amounts:
            self.check_amount(amount)
        self._require_public_key(public_key)
        handle_mult = self.backend.fixed_base(public_key)
        out = []
        for amount in amounts:
            r = random_scalar()
            out.append(Ciphertext(commitment=self.backend.commit(amount, r), handle=handle_mult(r)))
        return out

    def trivial_ciphertext(self, amount: int) -> Ciphertext:
        """(a*G, identity): encryption with r = 0, valid under every key."""
        self.check_amount(amount)
        return Ciphertext(commitment=self.backend.base_mult(amount), handle=IDENTITY)

    # -------------------------------------------------------------------------
    # Decryption
    # -------------------------------------------------------------------------

    def decrypt_to_point(self, ciphertext: Ciphertext, secret: int) -> bytes:
        """C - s*D, i.e. a*G for the right key."""
        return self.backend.sub(ciphertext.commitment, self.backend.scalar_mult(secret, ciphertext.handle))

    def decrypt(self, ciphertext: Ciphertext, secret: int) -> DecryptionResult:
        """
        Recover the amount, or DECRYPTION_AMBIGUOUS.

        A wrong key, a malformed ciphertext or a value beyond the search
        bound is an expected outcome, so nothing is raised for it.
        """
        valid, err = self.validate_ciphertext(ciphertext)
        if not valid:
            logger.debug(f"Not decrypting: {err}")
            return DECRYPTION_AMBIGUOUS
        value = discrete_log(self.backend, self.decrypt_to_point(ciphertext, secret), self.decrypt_bound_bits)
        if value is None:
            logger.debug("Decryption did not resolve within bound")
            return DECRYPTION_AMBIGUOUS
        return value

    # -------------------------------------------------------------------------
    # Homomorphic arithmetic
    # -------------------------------------------------------------------------

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """Enc(x) + Enc(y) = Enc(x + y) under the same key."""
        return Ciphertext(
            commitment=self.backend.add(a.commitment, b.commitment),
            handle=self.backend.add(a.handle, b.handle),
        )

    def subtract(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """
        Enc(x) - Enc(y) = Enc(x - y) under the same key.

        Underflow is not detectable here; check sufficiency on decrypted
        values first.
        """
        return Ciphertext(
            commitment=self.backend.sub(a.commitment, b.commitment),
            handle=self.backend.sub(a.handle, b.handle),
        )

    def add_amount(self, ciphertext: Ciphertext, amount: int) -> Ciphertext:
        return self.add(ciphertext, self.trivial_ciphertext(amount))

    def subtract_amount(self, ciphertext: Ciphertext, amount: int) -> Ciphertext:
        return self.subtract(ciphertext, self.trivial_ciphertext(amount))

    def __repr__(self) -> str:
        return f"<EncryptionEngine backend={self.backend.name} bound=2^{self.decrypt_bound_bits}>"
