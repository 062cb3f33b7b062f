"""
Cryptographic primitives for ctcore.

This module provides:
- Hashing functions (SHA-256, SHA-512)
- Scalar arithmetic modulo the Edwards25519 group order
- Curve backends (pure-Python reference, libsodium accelerated)
- Generators G and H for twisted ElGamal / Pedersen commitments

Design Notes:
-------------
All group elements are handled as canonical 32-byte compressed Edwards25519
encodings so that both backends can be swapped without converting data.
Scalars are plain Python integers reduced modulo CURVE_ORDER; they are only
turned into bytes at the wire boundary (little endian, like libsodium).
"""

import hashlib
import secrets
from typing import Union

from Crypto.Hash import SHA512


# =============================================================================
# Constants
# =============================================================================

# Edwards25519 prime-order subgroup size
CURVE_ORDER = 2**252 + 27742317777372353535851937790883648493

# Base field prime
FIELD_PRIME = 2**255 - 19

POINT_SIZE = 32
SCALAR_SIZE = 32

# Compressed encoding of the neutral element (x=0, y=1)
IDENTITY = b"\x01" + bytes(31)


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    """
    Compute SHA-256 hash.

    Used for: proof-context addresses, content addressing.
    """
    return hashlib.sha256(data).digest()


def sha512(data: bytes) -> bytes:
    """
    Compute SHA-512 hash.

    Used for: hash-to-scalar, hash-to-point, Fiat-Shamir challenges.
    """
    return SHA512.new(data).digest()


# =============================================================================
# Scalars
# =============================================================================


def random_scalar() -> int:
    """Uniform nonzero scalar from the OS CSPRNG."""
    return secrets.randbelow(CURVE_ORDER - 1) + 1


def hash_to_scalar(*parts: bytes) -> int:
    """
    Hash byte strings to a scalar mod L.

    Each part is length-prefixed so that ("ab", "c") and ("a", "bc")
    never collide.
    """
    h = SHA512.new()
    for part in parts:
        h.update(len(part).to_bytes(4, "little"))
        h.update(part)
    return int.from_bytes(h.digest(), "little") % CURVE_ORDER


def scalar_inverse(k: int) -> int:
    """Multiplicative inverse mod L."""
    k %= CURVE_ORDER
    if k == 0:
        raise ValueError("Zero scalar has no inverse")
    return pow(k, CURVE_ORDER - 2, CURVE_ORDER)


def scalar_to_bytes(k: int) -> bytes:
    """Encode scalar as 32 bytes little endian."""
    return (k % CURVE_ORDER).to_bytes(SCALAR_SIZE, "little")


def bytes_to_scalar(data: bytes, reduce: bool = False) -> int:
    """
    Decode a 32-byte little endian scalar.

    Args:
        data: 32-byte encoding
        reduce: Reduce mod L instead of rejecting non-canonical values

    Raises:
        ValueError: Wrong length, or value >= L when reduce is False
    """
    if len(data) != SCALAR_SIZE:
        raise ValueError(f"Scalar must be {SCALAR_SIZE} bytes, got {len(data)}")
    value = int.from_bytes(data, "little")
    if value >= CURVE_ORDER:
        if not reduce:
            raise ValueError("Non-canonical scalar encoding")
        value %= CURVE_ORDER
    return value


def coerce_scalar(value: Union[int, bytes]) -> int:
    """Accept an int or a 32-byte encoding, return a reduced scalar."""
    if isinstance(value, (bytes, bytearray)):
        return bytes_to_scalar(bytes(value), reduce=True)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Scalar must be int or bytes, got {type(value).__name__}")
    return value % CURVE_ORDER


# =============================================================================
# Utility Functions
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (with or without 0x prefix) to bytes."""
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)


# =============================================================================
# Curve Backends
# =============================================================================

# Imported last: the submodules depend on the constants above.
from ctcore.crypto.generators import G_BYTES, H_BYTES, hash_to_point
from ctcore.crypto.backends import (
    AccelerationCapability,
    BackendKind,
    CurveBackend,
    ReferenceBackend,
    SodiumBackend,
    get_backend,
    probe_acceleration,
)
from ctcore.crypto.transcript import Transcript
