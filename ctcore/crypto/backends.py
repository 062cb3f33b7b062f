"""
Curve backends - one group interface, two implementations.

ReferenceBackend is pure Python (ctcore.crypto.edwards). SodiumBackend wraps
libsodium's ed25519 core through PyNaCl. Both speak canonical 32-byte
encodings, so their outputs are bit-identical and can be mixed freely.

libsodium refuses zero scalars, identity inputs and identity results in
its scalar multiplication routines; SodiumBackend answers those cases
itself before calling into the library.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, List, Sequence

import nacl.exceptions
from nacl import bindings

from ctcore.crypto import CURVE_ORDER, IDENTITY, POINT_SIZE, scalar_to_bytes
from ctcore.crypto import edwards
from ctcore.crypto.edwards import (
    BASEPOINT,
    NEUTRAL,
    ExtendedPoint,
    FixedBaseTable,
    encode,
    encode_many,
    point_add,
    point_negate,
)
from ctcore.crypto.generators import G_BYTES, H_BYTES
from ctcore.utils.logger import get_logger

logger = get_logger("crypto")


class BackendKind(str, Enum):
    """Which curve implementation to use."""
    REFERENCE = "reference"
    SODIUM = "sodium"
    AUTO = "auto"


# =============================================================================
# Interface
# =============================================================================


class CurveBackend(ABC):
    """Group operations on 32-byte Edwards25519 encodings."""

    name: str = "abstract"
    accelerated: bool = False

    @abstractmethod
    def add(self, p: bytes, q: bytes) -> bytes:
        ...

    @abstractmethod
    def sub(self, p: bytes, q: bytes) -> bytes:
        ...

    @abstractmethod
    def scalar_mult(self, k: int, p: bytes) -> bytes:
        """k*P with k reduced mod L; 0*P is the identity."""

    @abstractmethod
    def base_mult(self, k: int) -> bytes:
        """k*G"""

    @abstractmethod
    def blinding_mult(self, k: int) -> bytes:
        """k*H"""

    @abstractmethod
    def is_valid_point(self, p: bytes) -> bool:
        """Canonical encoding of a prime-order-subgroup point (identity allowed)."""

    def negate(self, p: bytes) -> bytes:
        return self.sub(IDENTITY, p)

    def commit(self, amount: int, blinding: int) -> bytes:
        """Pedersen commitment amount*G + blinding*H."""
        return self.add(self.base_mult(amount), self.blinding_mult(blinding))

    def multi_mult(self, scalars: Sequence[int], points: Sequence[bytes]) -> bytes:
        """Sum of k_i * P_i."""
        if len(scalars) != len(points):
            raise ValueError("scalars and points must have the same length")
        acc = IDENTITY
        for k, p in zip(scalars, points):
            if k % CURVE_ORDER:
                acc = self.add(acc, self.scalar_mult(k, p))
        return acc

    def arithmetic_walk(self, start: bytes, step: bytes, count: int) -> List[bytes]:
        """[start + i*step for i in range(count)]"""
        out = []
        current = start
        for _ in range(count):
            out.append(current)
            current = self.add(current, step)
        return out

    def fixed_base(self, point: bytes) -> Callable[[int], bytes]:
        """Multiplier specialised for a point used many times."""
        return lambda k: self.scalar_mult(k, point)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name}>"


# =============================================================================
# Reference Backend (pure Python)
# =============================================================================


@lru_cache(maxsize=4096)
def _is_valid_encoding(data: bytes) -> bool:
    point = edwards.decode(data)
    if point is None:
        return False
    return edwards.in_prime_subgroup(point)


class ReferenceBackend(CurveBackend):
    """
    Pure-Python backend.

    Keeps fixed-base tables for G and H so commitments and key derivation
    cost ~64 additions instead of a full double-and-add ladder.
    """

    name = "reference"
    accelerated = False

    def __init__(self):
        self._g_table = FixedBaseTable(BASEPOINT)
        self._h_table = FixedBaseTable(self._decode(H_BYTES))

    @staticmethod
    def _decode(p: bytes) -> ExtendedPoint:
        point = edwards.decode(bytes(p))
        if point is None:
            raise ValueError(f"Invalid point encoding: {bytes(p).hex()}")
        return point

    def _mul(self, k: int, p: bytes) -> ExtendedPoint:
        k %= CURVE_ORDER
        if k == 0:
            return NEUTRAL
        if p == G_BYTES:
            return self._g_table.multiply(k)
        if p == H_BYTES:
            return self._h_table.multiply(k)
        return edwards.multiply(k, self._decode(p))

    def add(self, p: bytes, q: bytes) -> bytes:
        return encode(point_add(self._decode(p), self._decode(q)))

    def sub(self, p: bytes, q: bytes) -> bytes:
        return encode(point_add(self._decode(p), point_negate(self._decode(q))))

    def negate(self, p: bytes) -> bytes:
        return encode(point_negate(self._decode(p)))

    def scalar_mult(self, k: int, p: bytes) -> bytes:
        return encode(self._mul(k, p))

    def base_mult(self, k: int) -> bytes:
        return encode(self._g_table.multiply(k))

    def blinding_mult(self, k: int) -> bytes:
        return encode(self._h_table.multiply(k))

    def commit(self, amount: int, blinding: int) -> bytes:
        return encode(point_add(self._g_table.multiply(amount), self._h_table.multiply(blinding)))

    def multi_mult(self, scalars: Sequence[int], points: Sequence[bytes]) -> bytes:
        if len(scalars) != len(points):
            raise ValueError("scalars and points must have the same length")
        acc = NEUTRAL
        for k, p in zip(scalars, points):
            if k % CURVE_ORDER:
                acc = point_add(acc, self._mul(k, p))
        return encode(acc)

    def is_valid_point(self, p: bytes) -> bool:
        if not isinstance(p, (bytes, bytearray)) or len(p) != POINT_SIZE:
            return False
        return _is_valid_encoding(bytes(p))

    def arithmetic_walk(self, start: bytes, step: bytes, count: int) -> List[bytes]:
        current = self._decode(start)
        delta = self._decode(step)
        points = []
        for _ in range(count):
            points.append(current)
            current = point_add(current, delta)
        return encode_many(points)

    def fixed_base(self, point: bytes) -> Callable[[int], bytes]:
        if point == G_BYTES:
            return self.base_mult
        if point == H_BYTES:
            return self.blinding_mult
        table = FixedBaseTable(self._decode(point))
        return lambda k: encode(table.multiply(k))


# =============================================================================
# Sodium Backend (libsodium via PyNaCl)
# =============================================================================


class SodiumBackend(CurveBackend):
    """libsodium ed25519 core operations."""

    name = "sodium"
    accelerated = True

    def add(self, p: bytes, q: bytes) -> bytes:
        return bindings.crypto_core_ed25519_add(p, q)

    def sub(self, p: bytes, q: bytes) -> bytes:
        return bindings.crypto_core_ed25519_sub(p, q)

    def scalar_mult(self, k: int, p: bytes) -> bytes:
        k %= CURVE_ORDER
        if k == 0 or p == IDENTITY:
            return IDENTITY
        return bindings.crypto_scalarmult_ed25519_noclamp(scalar_to_bytes(k), p)

    def base_mult(self, k: int) -> bytes:
        k %= CURVE_ORDER
        if k == 0:
            return IDENTITY
        return bindings.crypto_scalarmult_ed25519_base_noclamp(scalar_to_bytes(k))

    def blinding_mult(self, k: int) -> bytes:
        return self.scalar_mult(k, H_BYTES)

    def is_valid_point(self, p: bytes) -> bool:
        if not isinstance(p, (bytes, bytearray)) or len(p) != POINT_SIZE:
            return False
        if bytes(p) == IDENTITY:
            return True
        return bindings.crypto_core_ed25519_is_valid_point(bytes(p))


# =============================================================================
# Capability Probe & Factory
# =============================================================================


@dataclass(frozen=True)
class AccelerationCapability:
    """Outcome of the one-time acceleration probe."""
    available: bool
    backend: str
    reason: str = ""


def probe_acceleration() -> AccelerationCapability:
    """
    Check whether the libsodium backend can be used on this platform.

    Minimal libsodium builds ship without the ed25519 core API; a
    known-answer test (2*G) catches broken builds as well.
    """
    if not (bindings.has_crypto_core_ed25519 and bindings.has_crypto_scalarmult_ed25519):
        return AccelerationCapability(False, SodiumBackend.name, "libsodium built without ed25519 core API")
    try:
        probe = bindings.crypto_scalarmult_ed25519_base_noclamp(scalar_to_bytes(2))
    except nacl.exceptions.CryptoError as e:
        return AccelerationCapability(False, SodiumBackend.name, f"self-test failed: {e}")
    if probe != encode(point_add(BASEPOINT, BASEPOINT)):
        return AccelerationCapability(False, SodiumBackend.name, "self-test mismatch")
    return AccelerationCapability(True, SodiumBackend.name)


@lru_cache(maxsize=None)
def _reference_backend() -> ReferenceBackend:
    return ReferenceBackend()


@lru_cache(maxsize=None)
def _sodium_backend() -> SodiumBackend:
    return SodiumBackend()


@lru_cache(maxsize=None)
def _cached_probe() -> AccelerationCapability:
    capability = probe_acceleration()
    if not capability.available:
        logger.warning(f"Accelerated backend unavailable: {capability.reason}")
    return capability


def get_backend(kind: BackendKind = BackendKind.REFERENCE) -> CurveBackend:
    """
    Get a shared backend instance.

    Backends are stateless apart from immutable precomputation, so a single
    instance per kind is shared.

    Raises:
        ValueError: SODIUM requested but unavailable
    """
    kind = BackendKind(kind)
    if kind is BackendKind.REFERENCE:
        return _reference_backend()
    available = _cached_probe().available
    if kind is BackendKind.SODIUM:
        if not available:
            raise ValueError(f"Sodium backend unavailable: {_cached_probe().reason}")
        return _sodium_backend()
    return _sodium_backend() if available else _reference_backend()
