"""
Range proofs for u64 amounts.

The committed value v is split into 64 bits. Each bit gets its own Pedersen
commitment C_i = b_i*G + r_i*H, with blindings chosen so that

    sum(2^i * C_i) == C

i.e. r_63 absorbs whatever is left of the original blinding. Each C_i is
shown to commit to 0 or 1 with a CDS OR-proof (knowledge of log_H of either
C_i or C_i - G). Challenges are 128 bits and split as c0 + c1 = c mod 2^128.

Per-bit layout (128 bytes):
    C_i (32) | c0 (16) | c1 (16) | s0 (32) | s1 (32)
"""

import secrets
from typing import List, Tuple

from ctcore.crypto import (
    CURVE_ORDER,
    G_BYTES,
    POINT_SIZE,
    CurveBackend,
    Transcript,
    bytes_to_scalar,
    random_scalar,
    scalar_inverse,
    scalar_to_bytes,
)
from ctcore.core.errors import AmountOutOfRange
from ctcore.core.types import AMOUNT_BITS, RANGE_BIT_PROOF_SIZE, RangeProof
from ctcore.utils.validation import validate_amount

RANGE_PROOF_DOMAIN = b"ctcore/range-proof-u64/v1"
CHALLENGE_BITS = 128
CHALLENGE_BYTES = CHALLENGE_BITS // 8
CHALLENGE_MASK = (1 << CHALLENGE_BITS) - 1


def _bit_challenge(base: Transcript, index: int, bit_commitment: bytes, a0: bytes, a1: bytes) -> int:
    t = base.fork()
    t.append_u64(b"bit-index", index)
    t.append_point(b"bit-commitment", bit_commitment)
    t.append_point(b"A0", a0)
    t.append_point(b"A1", a1)
    return t.challenge_bits(b"challenge", CHALLENGE_BITS)


def _base_transcript(commitment: bytes) -> Transcript:
    t = Transcript(RANGE_PROOF_DOMAIN)
    t.append_point(b"commitment", commitment)
    return t


def _bit_blindings(blinding: int) -> List[int]:
    """Random r_0..r_62, with r_63 fixed so the weighted sum equals blinding."""
    blindings = [random_scalar() for _ in range(AMOUNT_BITS - 1)]
    partial = sum((1 << i) * r for i, r in enumerate(blindings)) % CURVE_ORDER
    last = (blinding - partial) * scalar_inverse(1 << (AMOUNT_BITS - 1)) % CURVE_ORDER
    blindings.append(last)
    return blindings


# =============================================================================
# Prover
# =============================================================================


def prove_range(backend: CurveBackend, amount: int, commitment: bytes, blinding: int) -> RangeProof:
    """
    Prove commitment = amount*G + blinding*H hides a value in [0, 2^64).

    Raises:
        AmountOutOfRange: amount not in [0, 2^64)
        ValueError: commitment does not open to (amount, blinding)
    """
    valid, err = validate_amount(amount)
    if not valid:
        raise AmountOutOfRange(err)
    blinding %= CURVE_ORDER
    if backend.commit(amount, blinding) != commitment:
        raise ValueError("Commitment does not open to the given amount and blinding")

    base = _base_transcript(commitment)
    blindings = _bit_blindings(blinding)
    chunks = []

    for i, r_i in enumerate(blindings):
        bit = (amount >> i) & 1
        c_i = backend.commit(bit, r_i)
        # Y0 = C_i (bit 0), Y1 = C_i - G (bit 1); both should be r_i*H
        statements = (c_i, backend.sub(c_i, G_BYTES))

        k = random_scalar()
        fake_c = secrets.randbits(CHALLENGE_BITS)
        fake_s = random_scalar()
        fake_a = backend.sub(backend.blinding_mult(fake_s), backend.scalar_mult(fake_c, statements[1 - bit]))
        real_a = backend.blinding_mult(k)
        a = [None, None]
        a[bit] = real_a
        a[1 - bit] = fake_a

        c = _bit_challenge(base, i, c_i, a[0], a[1])
        real_c = (c - fake_c) & CHALLENGE_MASK
        real_s = (k + real_c * r_i) % CURVE_ORDER

        cs = [0, 0]
        ss = [0, 0]
        cs[bit], ss[bit] = real_c, real_s
        cs[1 - bit], ss[1 - bit] = fake_c, fake_s

        chunks.append(b"".join([
            c_i,
            cs[0].to_bytes(CHALLENGE_BYTES, "little"),
            cs[1].to_bytes(CHALLENGE_BYTES, "little"),
            scalar_to_bytes(ss[0]),
            scalar_to_bytes(ss[1]),
        ]))

    return RangeProof(commitment=commitment, proof=b"".join(chunks))


# =============================================================================
# Verifier
# =============================================================================


def _parse_bit(chunk: bytes) -> Tuple[bytes, int, int, int, int]:
    c_i = chunk[:POINT_SIZE]
    offset = POINT_SIZE
    c0 = int.from_bytes(chunk[offset:offset + CHALLENGE_BYTES], "little")
    offset += CHALLENGE_BYTES
    c1 = int.from_bytes(chunk[offset:offset + CHALLENGE_BYTES], "little")
    offset += CHALLENGE_BYTES
    s0 = bytes_to_scalar(chunk[offset:offset + 32])
    s1 = bytes_to_scalar(chunk[offset + 32:offset + 64])
    return c_i, c0, c1, s0, s1


def verify_range(backend: CurveBackend, proof: RangeProof) -> bool:
    """
    Verify every bit OR-proof and that the bit commitments recombine to
    proof.commitment.
    """
    if not backend.is_valid_point(proof.commitment):
        return False

    base = _base_transcript(proof.commitment)
    bit_commitments = []

    for i in range(AMOUNT_BITS):
        chunk = proof.proof[i * RANGE_BIT_PROOF_SIZE:(i + 1) * RANGE_BIT_PROOF_SIZE]
        try:
            c_i, c0, c1, s0, s1 = _parse_bit(chunk)
        except ValueError:
            return False
        if not backend.is_valid_point(c_i):
            return False

        y1 = backend.sub(c_i, G_BYTES)
        # A_j = s_j*H - c_j*Y_j
        a0 = backend.sub(backend.blinding_mult(s0), backend.scalar_mult(c0, c_i))
        a1 = backend.sub(backend.blinding_mult(s1), backend.scalar_mult(c1, y1))
        c = _bit_challenge(base, i, c_i, a0, a1)
        if (c0 + c1) & CHALLENGE_MASK != c:
            return False
        bit_commitments.append(c_i)

    recombined = backend.multi_mult([1 << i for i in range(AMOUNT_BITS)], bit_commitments)
    return recombined == proof.commitment
