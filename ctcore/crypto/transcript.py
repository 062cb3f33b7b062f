"""
Fiat-Shamir transcript.

Every message is framed as len(label) | label | len(data) | data so that the
challenge binds the exact sequence of appended values. Challenges are read
from a copy of the running SHA-512 state and then absorbed back, so later
challenges depend on earlier ones.
"""

import struct

from Crypto.Hash import SHA512

from ctcore.crypto import CURVE_ORDER, scalar_to_bytes


class Transcript:
    """Running SHA-512 transcript for non-interactive sigma protocols."""

    def __init__(self, label: bytes):
        self._hash = SHA512.new()
        self.append(b"dom-sep", label)

    def append(self, label: bytes, data: bytes) -> None:
        self._hash.update(struct.pack("<I", len(label)) + label)
        self._hash.update(struct.pack("<I", len(data)) + data)

    def append_point(self, label: bytes, point: bytes) -> None:
        self.append(label, point)

    def append_scalar(self, label: bytes, scalar: int) -> None:
        self.append(label, scalar_to_bytes(scalar))

    def append_u64(self, label: bytes, value: int) -> None:
        self.append(label, struct.pack("<Q", value))

    def _squeeze(self, label: bytes) -> bytes:
        h = self._hash.copy()
        h.update(struct.pack("<I", len(label)) + label)
        digest = h.digest()
        self.append(label, digest)
        return digest

    def challenge_scalar(self, label: bytes) -> int:
        """Challenge uniformly distributed mod L (64-byte wide reduction)."""
        return int.from_bytes(self._squeeze(label), "little") % CURVE_ORDER

    def challenge_bits(self, label: bytes, bits: int) -> int:
        """Challenge in [0, 2^bits), bits <= 512."""
        value = int.from_bytes(self._squeeze(label), "little")
        return value & ((1 << bits) - 1)

    def fork(self) -> "Transcript":
        """Independent copy sharing the current state."""
        clone = Transcript.__new__(Transcript)
        clone._hash = self._hash.copy()
        return clone
