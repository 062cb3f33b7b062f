"""
Data model for confidential balances and the proofs that move them.

All types are immutable: a new ciphertext is always derived, never edited
in place. Points are canonical 32-byte encodings, secrets are scalars mod L.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from ctcore.crypto import (
    POINT_SIZE,
    bytes_to_hex,
    hex_to_bytes,
    scalar_to_bytes,
)

# Opaque algebra aliases
SecretScalar = int
PublicPoint = bytes
PedersenCommitment = bytes

# =============================================================================
# Sizes
# =============================================================================

AMOUNT_BITS = 64
MAX_AMOUNT = 2**AMOUNT_BITS - 1

CIPHERTEXT_SIZE = 2 * POINT_SIZE
# 4 points + 3 scalars
CIPHERTEXT_EQUALITY_PROOF_SIZE = 7 * 32
# 3 points + 3 scalars
CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE = 6 * 32
# per bit: commitment 32 | c0 16 | c1 16 | s0 32 | s1 32
RANGE_BIT_PROOF_SIZE = 128
RANGE_PROOF_BODY_SIZE = AMOUNT_BITS * RANGE_BIT_PROOF_SIZE
RANGE_PROOF_SIZE = POINT_SIZE + RANGE_PROOF_BODY_SIZE


class Unknown(Enum):
    """Decryption did not recover an amount (wrong key, or value outside the searched range)."""
    DECRYPTION_AMBIGUOUS = "decryption_ambiguous"


DECRYPTION_AMBIGUOUS = Unknown.DECRYPTION_AMBIGUOUS

DecryptionResult = Union[int, Unknown]


def _require_length(value: bytes, length: int, name: str) -> bytes:
    if not isinstance(value, (bytes, bytearray)) or len(value) != length:
        raise ValueError(f"{name} must be {length} bytes")
    return bytes(value)


# =============================================================================
# Keys & Ciphertexts
# =============================================================================


@dataclass(frozen=True)
class EncryptionKeypair:
    """
    Twisted ElGamal keypair.

    public_key = secret_key^-1 * H. Owned by the account holder only; the
    secret is excluded from repr and from to_dict() unless asked for.
    """
    public_key: PublicPoint
    secret_key: SecretScalar = field(repr=False)

    def __post_init__(self):
        _require_length(self.public_key, POINT_SIZE, "public_key")

    @property
    def secret_bytes(self) -> bytes:
        return scalar_to_bytes(self.secret_key)

    def to_dict(self, include_secret: bool = False) -> dict:
        data = {"public_key": bytes_to_hex(self.public_key)}
        if include_secret:
            data["secret_key"] = bytes_to_hex(self.secret_bytes)
        return data


@dataclass(frozen=True)
class Ciphertext:
    """
    Encrypted amount under one public key.

    commitment = a*G + r*H (a Pedersen commitment to a)
    handle     = r*P       (lets the key holder strip r*H)
    """
    commitment: PedersenCommitment
    handle: bytes

    def __post_init__(self):
        _require_length(self.commitment, POINT_SIZE, "commitment")
        _require_length(self.handle, POINT_SIZE, "handle")

    def to_bytes(self) -> bytes:
        return self.commitment + self.handle

    @classmethod
    def from_bytes(cls, data: bytes) -> "Ciphertext":
        _require_length(data, CIPHERTEXT_SIZE, "ciphertext")
        return cls(commitment=bytes(data[:POINT_SIZE]), handle=bytes(data[POINT_SIZE:]))

    def to_dict(self) -> dict:
        return {
            "commitment": bytes_to_hex(self.commitment),
            "handle": bytes_to_hex(self.handle),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Ciphertext":
        return cls(
            commitment=hex_to_bytes(data["commitment"]),
            handle=hex_to_bytes(data["handle"]),
        )


# =============================================================================
# Proofs
# =============================================================================


@dataclass(frozen=True)
class RangeProof:
    """Proof that `commitment` hides a value in [0, 2^64)."""
    commitment: PedersenCommitment
    proof: bytes

    def __post_init__(self):
        _require_length(self.commitment, POINT_SIZE, "commitment")
        _require_length(self.proof, RANGE_PROOF_BODY_SIZE, "range proof")

    def to_bytes(self) -> bytes:
        return self.commitment + self.proof

    @classmethod
    def from_bytes(cls, data: bytes) -> "RangeProof":
        _require_length(data, RANGE_PROOF_SIZE, "range proof")
        return cls(commitment=bytes(data[:POINT_SIZE]), proof=bytes(data[POINT_SIZE:]))


@dataclass(frozen=True)
class TransferProof:
    """
    Everything a verifier needs to accept a confidential transfer.

    Wire layout (fixed size):
        encrypted_transfer_amount (64) | new_source_commitment (32) |
        equality_proof (224) | validity_proof (192) | range_proof (8224) |
        destination_ciphertext (64) | amount_range_proof (8224)
    """
    encrypted_transfer_amount: Ciphertext   # amount under the sender key
    new_source_commitment: PedersenCommitment
    equality_proof: bytes                   # sender ct and destination ct hide the same amount
    validity_proof: bytes                   # new balance ct matches range_proof.commitment
    range_proof: RangeProof                 # new balance in [0, 2^64)
    destination_ciphertext: Ciphertext      # amount under the receiver key
    amount_range_proof: RangeProof          # transfer amount in [0, 2^64)

    SIZE = (
        CIPHERTEXT_SIZE + POINT_SIZE + CIPHERTEXT_EQUALITY_PROOF_SIZE
        + CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE + RANGE_PROOF_SIZE
        + CIPHERTEXT_SIZE + RANGE_PROOF_SIZE
    )

    def __post_init__(self):
        _require_length(self.new_source_commitment, POINT_SIZE, "new_source_commitment")
        _require_length(self.equality_proof, CIPHERTEXT_EQUALITY_PROOF_SIZE, "equality_proof")
        _require_length(self.validity_proof, CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE, "validity_proof")

    def to_bytes(self) -> bytes:
        return b"".join([
            self.encrypted_transfer_amount.to_bytes(),
            self.new_source_commitment,
            self.equality_proof,
            self.validity_proof,
            self.range_proof.to_bytes(),
            self.destination_ciphertext.to_bytes(),
            self.amount_range_proof.to_bytes(),
        ])

    @classmethod
    def from_bytes(cls, data: bytes) -> "TransferProof":
        _require_length(data, cls.SIZE, "transfer proof")
        sizes = [
            CIPHERTEXT_SIZE, POINT_SIZE, CIPHERTEXT_EQUALITY_PROOF_SIZE,
            CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE, RANGE_PROOF_SIZE,
            CIPHERTEXT_SIZE, RANGE_PROOF_SIZE,
        ]
        parts = []
        offset = 0
        for size in sizes:
            parts.append(bytes(data[offset:offset + size]))
            offset += size
        return cls(
            encrypted_transfer_amount=Ciphertext.from_bytes(parts[0]),
            new_source_commitment=parts[1],
            equality_proof=parts[2],
            validity_proof=parts[3],
            range_proof=RangeProof.from_bytes(parts[4]),
            destination_ciphertext=Ciphertext.from_bytes(parts[5]),
            amount_range_proof=RangeProof.from_bytes(parts[6]),
        )


@dataclass(frozen=True)
class WithdrawProof:
    """
    Proof for moving a public amount out of the encrypted balance.

    Wire layout (fixed size):
        encrypted_withdraw_amount (64) | new_source_commitment (32) |
        equality_proof (192) | range_proof (8224)
    """
    encrypted_withdraw_amount: Ciphertext   # trivial encryption (a*G, identity)
    new_source_commitment: PedersenCommitment
    equality_proof: bytes                   # new balance ct matches range_proof.commitment
    range_proof: RangeProof

    SIZE = CIPHERTEXT_SIZE + POINT_SIZE + CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE + RANGE_PROOF_SIZE

    def __post_init__(self):
        _require_length(self.new_source_commitment, POINT_SIZE, "new_source_commitment")
        _require_length(self.equality_proof, CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE, "equality_proof")

    def to_bytes(self) -> bytes:
        return b"".join([
            self.encrypted_withdraw_amount.to_bytes(),
            self.new_source_commitment,
            self.equality_proof,
            self.range_proof.to_bytes(),
        ])

    @classmethod
    def from_bytes(cls, data: bytes) -> "WithdrawProof":
        _require_length(data, cls.SIZE, "withdraw proof")
        a = CIPHERTEXT_SIZE
        b = a + POINT_SIZE
        c = b + CIPHERTEXT_COMMITMENT_EQUALITY_PROOF_SIZE
        return cls(
            encrypted_withdraw_amount=Ciphertext.from_bytes(data[:a]),
            new_source_commitment=bytes(data[a:b]),
            equality_proof=bytes(data[b:c]),
            range_proof=RangeProof.from_bytes(data[c:]),
        )


@dataclass(frozen=True)
class TransferProofResult:
    transfer_proof: TransferProof
    new_source_balance: Ciphertext
    dest_ciphertext: Ciphertext


@dataclass(frozen=True)
class WithdrawProofResult:
    withdraw_proof: WithdrawProof
    new_source_balance: Ciphertext


# =============================================================================
# Participants
# =============================================================================


@dataclass(frozen=True)
class TransferParticipant:
    """One leg of a batch transfer."""
    address: bytes          # destination token account
    public_key: PublicPoint  # destination ElGamal key
    amount: int

    def __post_init__(self):
        _require_length(self.address, 32, "address")
        _require_length(self.public_key, POINT_SIZE, "public_key")
