"""
Edwards25519 group arithmetic in pure Python.

Follows RFC 8032 section 5.1: the curve -x^2 + y^2 = 1 + d*x^2*y^2 over
GF(2^255 - 19), points in extended homogeneous coordinates (X, Y, Z, T)
with x = X/Z, y = Y/Z, x*y = T/Z. The addition law is complete, so the
same formula handles doubling and the neutral element.

This is the reference implementation behind ReferenceBackend; nothing in
here is constant time.
"""

from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

from ctcore.crypto import CURVE_ORDER, FIELD_PRIME, POINT_SIZE

P = FIELD_PRIME
L = CURVE_ORDER

ExtendedPoint = Tuple[int, int, int, int]


def _inv(x: int) -> int:
    return pow(x, P - 2, P)


D = -121665 * _inv(121666) % P
D2 = 2 * D % P
SQRT_M1 = pow(2, (P - 1) // 4, P)

NEUTRAL: ExtendedPoint = (0, 1, 1, 0)


# =============================================================================
# Point Operations
# =============================================================================


def point_add(p: ExtendedPoint, q: ExtendedPoint) -> ExtendedPoint:
    """Unified addition (add-2008-hwcd-3)."""
    x1, y1, z1, t1 = p
    x2, y2, z2, t2 = q
    a = (y1 - x1) * (y2 - x2) % P
    b = (y1 + x1) * (y2 + x2) % P
    c = t1 * D2 * t2 % P
    d = 2 * z1 * z2 % P
    e, f, g, h = b - a, d - c, d + c, b + a
    return (e * f % P, g * h % P, f * g % P, e * h % P)


def point_double(p: ExtendedPoint) -> ExtendedPoint:
    """Dedicated doubling (dbl-2008-hwcd)."""
    x1, y1, z1, _ = p
    a = x1 * x1 % P
    b = y1 * y1 % P
    c = 2 * z1 * z1 % P
    h = a + b
    e = h - (x1 + y1) * (x1 + y1)
    g = a - b
    f = c + g
    return (e * f % P, g * h % P, f * g % P, e * h % P)


def point_negate(p: ExtendedPoint) -> ExtendedPoint:
    x, y, z, t = p
    return (-x % P, y, z, -t % P)


def point_equal(p: ExtendedPoint, q: ExtendedPoint) -> bool:
    """Projective equality: compare x1/z1 == x2/z2 and y1/z1 == y2/z2."""
    if (p[0] * q[2] - q[0] * p[2]) % P != 0:
        return False
    if (p[1] * q[2] - q[1] * p[2]) % P != 0:
        return False
    return True


def is_neutral(p: ExtendedPoint) -> bool:
    return point_equal(p, NEUTRAL)


# =============================================================================
# Scalar Multiplication
# =============================================================================


def _window_table(p: ExtendedPoint) -> List[ExtendedPoint]:
    """[0*P, 1*P, ..., 15*P] for 4-bit windows."""
    table = [NEUTRAL, p]
    for _ in range(14):
        table.append(point_add(table[-1], p))
    return table


def multiply(k: int, p: ExtendedPoint) -> ExtendedPoint:
    """
    Variable-base multiplication k*P, k >= 0, not reduced mod L.

    Left-to-right 4-bit fixed window. Keeping k unreduced lets callers test
    subgroup membership with L*P.
    """
    if k < 0:
        raise ValueError("Scalar must be non-negative")
    if k == 0:
        return NEUTRAL
    table = _window_table(p)
    top = (k.bit_length() - 1) // 4 * 4
    acc = table[(k >> top) & 15]
    for shift in range(top - 4, -1, -4):
        acc = point_double(point_double(point_double(point_double(acc))))
        nibble = (k >> shift) & 15
        if nibble:
            acc = point_add(acc, table[nibble])
    return acc


def mul_by_cofactor(p: ExtendedPoint) -> ExtendedPoint:
    return point_double(point_double(point_double(p)))


class FixedBaseTable:
    """
    Precomputed multiples j * 16^i * B for a fixed base B.

    Multiplication by any scalar < 2^256 then costs at most 64 additions
    and no doublings.
    """

    WINDOWS = 64

    def __init__(self, base: ExtendedPoint):
        self.rows: List[List[ExtendedPoint]] = []
        current = base
        for _ in range(self.WINDOWS):
            row = _window_table(current)
            self.rows.append(row)
            current = point_add(row[15], current)

    def multiply(self, k: int) -> ExtendedPoint:
        k %= L
        acc = NEUTRAL
        i = 0
        while k:
            nibble = k & 15
            if nibble:
                acc = point_add(acc, self.rows[i][nibble])
            k >>= 4
            i += 1
        return acc


# =============================================================================
# Encoding
# =============================================================================


def _recover_x(y: int, sign: int) -> Optional[int]:
    if y >= P:
        return None
    x2 = (y * y - 1) * _inv(D * y * y + 1) % P
    if x2 == 0:
        if sign:
            return None
        return 0
    x = pow(x2, (P + 3) // 8, P)
    if (x * x - x2) % P != 0:
        x = x * SQRT_M1 % P
    if (x * x - x2) % P != 0:
        return None
    if (x & 1) != sign:
        x = P - x
    return x


def _encode_affine(x: int, y: int) -> bytes:
    return (y | ((x & 1) << 255)).to_bytes(POINT_SIZE, "little")


def encode(p: ExtendedPoint) -> bytes:
    """Compress a point to its canonical 32-byte encoding."""
    zinv = _inv(p[2])
    return _encode_affine(p[0] * zinv % P, p[1] * zinv % P)


def encode_many(points: Sequence[ExtendedPoint]) -> List[bytes]:
    """
    Compress many points with a single field inversion.

    Montgomery's trick: invert the product of all Z, then peel off each
    individual inverse walking backwards.
    """
    if not points:
        return []
    prefix = []
    acc = 1
    for point in points:
        prefix.append(acc)
        acc = acc * point[2] % P
    inv = _inv(acc)
    out: List[bytes] = [b""] * len(points)
    for i in range(len(points) - 1, -1, -1):
        x, y, z, _ = points[i]
        zinv = inv * prefix[i] % P
        inv = inv * z % P
        out[i] = _encode_affine(x * zinv % P, y * zinv % P)
    return out


@lru_cache(maxsize=8192)
def decode(data: bytes) -> Optional[ExtendedPoint]:
    """
    Decompress a 32-byte encoding.

    Returns None for non-canonical y, x=0 with the sign bit set, or values
    that are not on the curve. Subgroup membership is NOT checked here.
    """
    if len(data) != POINT_SIZE:
        return None
    n = int.from_bytes(data, "little")
    sign = n >> 255
    y = n & ((1 << 255) - 1)
    x = _recover_x(y, sign)
    if x is None:
        return None
    return (x, y, 1, x * y % P)


def in_prime_subgroup(p: ExtendedPoint) -> bool:
    return is_neutral(multiply(L, p))


# Standard basepoint: y = 4/5, x even
_BY = 4 * _inv(5) % P
_BX = _recover_x(_BY, 0)
BASEPOINT: ExtendedPoint = (_BX, _BY, 1, _BX * _BY % P)
