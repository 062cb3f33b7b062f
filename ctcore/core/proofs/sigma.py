"""
Sigma protocols binding ciphertexts to each other and to commitments.

Both proofs are Schnorr-style proofs of knowledge made non-interactive
with a SHA-512 transcript. Verification equations are checked as single
multi-scalar multiplications of the form  sum(k_i * P_i) == Y,  with the
challenge folded in as (L - c).

Ciphertext-ciphertext equality (224 bytes):
    (C1, D1) under P1 and (C2, D2) under P2 encrypt the same amount.
    Y0 | Y1 | Y2 | Y3 | z_a | z_1 | z_2

Ciphertext-commitment equality (192 bytes):
    (C, D) under P = s^-1*H encrypts the value of a Pedersen commitment C'.
    Uses C = x*G + s*D, so the prover needs the secret key but not the
    ciphertext randomness.
    Y0 | Y1 | Y2 | z_s | z_x | z_r
"""

from dataclasses import dataclass
from typing import Sequence

from ctcore.crypto import (
    CURVE_ORDER,
    G_BYTES,
    H_BYTES,
    POINT_SIZE,
    SCALAR_SIZE,
    CurveBackend,
    Transcript,
    bytes_to_scalar,
    random_scalar,
    scalar_to_bytes,
)
from ctcore.core.types import (
    CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE,
    CIPHERTEXT_EQUALITY_PROOF_SIZE,
    Ciphertext,
)

CIPHERTEXT_EQUALITY_DOMAIN = b"ctcore/ciphertext-ciphertext-equality/v1"
CIPHERTEXT_COMMITMENT_DOMAIN = b"ctcore/ciphertext-commitment-equality/v1"


def _split(data: bytes, n_points: int, n_scalars: int):
    """Split a proof into points and canonical scalars (ValueError if malformed)."""
    expected = n_points * POINT_SIZE + n_scalars * SCALAR_SIZE
    if len(data) != expected:
        raise ValueError(f"Proof must be {expected} bytes, got {len(data)}")
    points = [bytes(data[i * POINT_SIZE:(i + 1) * POINT_SIZE]) for i in range(n_points)]
    base = n_points * POINT_SIZE
    scalars = [
        bytes_to_scalar(bytes(data[base + i * SCALAR_SIZE:base + (i + 1) * SCALAR_SIZE]))
        for i in range(n_scalars)
    ]
    return points, scalars


def _all_valid(backend: CurveBackend, points: Sequence[bytes]) -> bool:
    return all(backend.is_valid_point(p) for p in points)


# =============================================================================
# Ciphertext-Ciphertext Equality
# =============================================================================


@dataclass(frozen=True)
class CiphertextEqualityProof:
    """Two ciphertexts under different keys hide the same amount."""
    y0: bytes
    y1: bytes
    y2: bytes
    y3: bytes
    z_amount: int
    z_first: int
    z_second: int

    SIZE = CIPHERTEXT_EQUALITY_PROOF_SIZE

    def to_bytes(self) -> bytes:
        return b"".join([
            self.y0, self.y1, self.y2, self.y3,
            scalar_to_bytes(self.z_amount),
            scalar_to_bytes(self.z_first),
            scalar_to_bytes(self.z_second),
        ])

    @classmethod
    def from_bytes(cls, data: bytes) -> "CiphertextEqualityProof":
        points, scalars = _split(data, 4, 3)
        return cls(*points, *scalars)


def _equality_transcript(
    first_key: bytes,
    second_key: bytes,
    first: Ciphertext,
    second: Ciphertext,
) -> Transcript:
    t = Transcript(CIPHERTEXT_EQUALITY_DOMAIN)
    t.append_point(b"first-pubkey", first_key)
    t.append_point(b"second-pubkey", second_key)
    t.append(b"first-ciphertext", first.to_bytes())
    t.append(b"second-ciphertext", second.to_bytes())
    return t


def prove_ciphertext_equality(
    backend: CurveBackend,
    amount: int,
    first_key: bytes,
    first: Ciphertext,
    first_opening: int,
    second_key: bytes,
    second: Ciphertext,
    second_opening: int,
) -> CiphertextEqualityProof:
    """
    Prove first and second encrypt `amount`.

    Args:
        backend: Curve backend
        amount: Shared plaintext
        first_key: Public key of the first ciphertext
        first: Ciphertext under first_key
        first_opening: Randomness used for `first`
        second_key: Public key of the second ciphertext
        second: Ciphertext under second_key
        second_opening: Randomness used for `second`
    """
    y_a, y_1, y_2 = random_scalar(), random_scalar(), random_scalar()
    y0 = backend.commit(y_a, y_1)
    y1 = backend.scalar_mult(y_1, first_key)
    y2 = backend.commit(y_a, y_2)
    y3 = backend.scalar_mult(y_2, second_key)

    t = _equality_transcript(first_key, second_key, first, second)
    for label, point in ((b"Y0", y0), (b"Y1", y1), (b"Y2", y2), (b"Y3", y3)):
        t.append_point(label, point)
    c = t.challenge_scalar(b"challenge")

    return CiphertextEqualityProof(
        y0=y0,
        y1=y1,
        y2=y2,
        y3=y3,
        z_amount=(y_a + c * amount) % CURVE_ORDER,
        z_first=(y_1 + c * first_opening) % CURVE_ORDER,
        z_second=(y_2 + c * second_opening) % CURVE_ORDER,
    )


def verify_ciphertext_equality(
    backend: CurveBackend,
    first_key: bytes,
    first: Ciphertext,
    second_key: bytes,
    second: Ciphertext,
    proof: bytes,
) -> bool:
    """Check a serialized ciphertext-ciphertext equality proof."""
    try:
        p = CiphertextEqualityProof.from_bytes(proof)
    except ValueError:
        return False
    if not _all_valid(backend, [
        first_key, second_key, first.commitment, first.handle,
        second.commitment, second.handle, p.y0, p.y1, p.y2, p.y3,
    ]):
        return False

    t = _equality_transcript(first_key, second_key, first, second)
    for label, point in ((b"Y0", p.y0), (b"Y1", p.y1), (b"Y2", p.y2), (b"Y3", p.y3)):
        t.append_point(label, point)
    c = t.challenge_scalar(b"challenge")
    neg_c = (CURVE_ORDER - c) % CURVE_ORDER

    checks = [
        ([p.z_amount, p.z_first, neg_c], [G_BYTES, H_BYTES, first.commitment], p.y0),
        ([p.z_first, neg_c], [first_key, first.handle], p.y1),
        ([p.z_amount, p.z_second, neg_c], [G_BYTES, H_BYTES, second.commitment], p.y2),
        ([p.z_second, neg_c], [second_key, second.handle], p.y3),
    ]
    return all(backend.multi_mult(k, pts) == expected for k, pts, expected in checks)


# =============================================================================
# Ciphertext-Commitment Equality
# =============================================================================


@dataclass(frozen=True)
class CiphertextCommitmentEqualityProof:
    """A ciphertext and a Pedersen commitment hide the same amount."""
    y0: bytes
    y1: bytes
    y2: bytes
    z_secret: int
    z_amount: int
    z_opening: int

    SIZE = CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE

    def to_bytes(self) -> bytes:
        return b"".join([
            self.y0, self.y1, self.y2,
            scalar_to_bytes(self.z_secret),
            scalar_to_bytes(self.z_amount),
            scalar_to_bytes(self.z_opening),
        ])

    @classmethod
    def from_bytes(cls, data: bytes) -> "CiphertextCommitmentEqualityProof":
        points, scalars = _split(data, 3, 3)
        return cls(*points, *scalars)


def _commitment_transcript(public_key: bytes, ciphertext: Ciphertext, commitment: bytes) -> Transcript:
    t = Transcript(CIPHERTEXT_COMMITMENT_DOMAIN)
    t.append_point(b"pubkey", public_key)
    t.append(b"ciphertext", ciphertext.to_bytes())
    t.append_point(b"commitment", commitment)
    return t


def prove_ciphertext_commitment_equality(
    backend: CurveBackend,
    secret: int,
    public_key: bytes,
    ciphertext: Ciphertext,
    amount: int,
    commitment: bytes,
    opening: int,
) -> CiphertextCommitmentEqualityProof:
    """
    Prove `ciphertext` (under public_key = secret^-1 * H) and `commitment`
    both hide `amount`, where commitment = amount*G + opening*H.
    """
    y_s, y_x, y_r = random_scalar(), random_scalar(), random_scalar()
    y0 = backend.scalar_mult(y_s, public_key)
    y1 = backend.multi_mult([y_x, y_s], [G_BYTES, ciphertext.handle])
    y2 = backend.commit(y_x, y_r)

    t = _commitment_transcript(public_key, ciphertext, commitment)
    for label, point in ((b"Y0", y0), (b"Y1", y1), (b"Y2", y2)):
        t.append_point(label, point)
    c = t.challenge_scalar(b"challenge")

    return CiphertextCommitmentEqualityProof(
        y0=y0,
        y1=y1,
        y2=y2,
        z_secret=(y_s + c * secret) % CURVE_ORDER,
        z_amount=(y_x + c * amount) % CURVE_ORDER,
        z_opening=(y_r + c * opening) % CURVE_ORDER,
    )


def verify_ciphertext_commitment_equality(
    backend: CurveBackend,
    public_key: bytes,
    ciphertext: Ciphertext,
    commitment: bytes,
    proof: bytes,
) -> bool:
    """Check a serialized ciphertext-commitment equality proof."""
    try:
        p = CiphertextCommitmentEqualityProof.from_bytes(proof)
    except ValueError:
        return False
    if not _all_valid(backend, [
        public_key, ciphertext.commitment, ciphertext.handle, commitment, p.y0, p.y1, p.y2,
    ]):
        return False

    t = _commitment_transcript(public_key, ciphertext, commitment)
    for label, point in ((b"Y0", p.y0), (b"Y1", p.y1), (b"Y2", p.y2)):
        t.append_point(label, point)
    c = t.challenge_scalar(b"challenge")
    neg_c = (CURVE_ORDER - c) % CURVE_ORDER

    checks = [
        ([p.z_secret, neg_c], [public_key, H_BYTES], p.y0),
        ([p.z_amount, p.z_secret, neg_c], [G_BYTES, ciphertext.handle, ciphertext.commitment], p.y1),
        ([p.z_amount, p.z_opening, neg_c], [G_BYTES, H_BYTES, commitment], p.y2),
    ]
    return all(backend.multi_mult(k, pts) == expected for k, pts, expected in checks)
