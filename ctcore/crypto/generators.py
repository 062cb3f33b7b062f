"""
Pedersen / ElGamal generators.

G is the standard Edwards25519 basepoint. H is derived by try-and-increment
hashing so that nobody knows log_G(H); the cofactor is cleared so H lies in
the prime-order subgroup.
"""

import struct

from ctcore.crypto import sha512
from ctcore.crypto.edwards import (
    BASEPOINT,
    decode,
    encode,
    is_neutral,
    mul_by_cofactor,
)

DOMAIN_HASH_TO_POINT = b"ctcore/hash-to-point/v1"
H_GENERATOR_SEED = b"ctcore/pedersen-blinding-generator"


def hash_to_point(data: bytes) -> bytes:
    """
    Hash data to a point of the prime-order subgroup.

    Raises:
        ValueError: No valid candidate after 256 attempts (never observed)
    """
    for counter in range(256):
        candidate = sha512(DOMAIN_HASH_TO_POINT + data + struct.pack("<B", counter))[:32]
        point = decode(candidate)
        if point is None:
            continue
        point = mul_by_cofactor(point)
        if is_neutral(point):
            continue
        return encode(point)
    raise ValueError("Hash to point failed after 256 attempts")


G_BYTES = encode(BASEPOINT)
H_BYTES = hash_to_point(H_GENERATOR_SEED)
