"""
Instruction encoding for the token program's confidential transfer
extension and the zk proof program.

Every payload is bit-exact with what the on-chain programs expect:
little-endian fixed-width integers, raw 32-byte keys at fixed offsets.

Confidential transfer sub-instructions start with [25, sub_op]:
    0 InitializeMint               auto_approve u8 | authority 32 | auditor 32
    1 ConfigureAccount             elgamal pubkey 32 | max pending credits u64
    2 Transfer                     (no payload; proof lives in a context account)
    3 ApplyPendingBalance          expected pending credit counter u64
    4 EnableConfidentialCredits
    5 DisableConfidentialCredits
    6 Withdraw                     amount u64
    7 Deposit                      amount u64
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List

import base58

from ctcore.utils.validation import validate_address, validate_amount, validate_point

# =============================================================================
# Program IDs
# =============================================================================

TOKEN_2022_PROGRAM_ID = base58.b58decode("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")
ZK_PROOF_PROGRAM_ID = base58.b58decode("ZkTokenProof1111111111111111111111111111111")
SYSTEM_PROGRAM_ID = base58.b58decode("11111111111111111111111111111111")

CONFIDENTIAL_TRANSFER_EXTENSION = 25
DEFAULT_MAX_PENDING_CREDITS = 65536

# Rent-exemption parameters of the target cluster
LAMPORTS_PER_BYTE_YEAR = 3480
RENT_EXEMPTION_YEARS = 2
ACCOUNT_STORAGE_OVERHEAD = 128


class ConfidentialTransferInstruction(IntEnum):
    INITIALIZE_MINT = 0
    CONFIGURE_ACCOUNT = 1
    TRANSFER = 2
    APPLY_PENDING_BALANCE = 3
    ENABLE_CONFIDENTIAL_CREDITS = 4
    DISABLE_CONFIDENTIAL_CREDITS = 5
    WITHDRAW = 6
    DEPOSIT = 7


class ProofInstruction(IntEnum):
    CLOSE_CONTEXT_STATE = 0
    VERIFY_ZERO_BALANCE = 1
    VERIFY_WITHDRAW = 2
    VERIFY_CIPHERTEXT_CIPHERTEXT_EQUALITY = 3
    VERIFY_TRANSFER = 4
    VERIFY_TRANSFER_WITH_FEE = 5
    VERIFY_PUBKEY_VALIDITY = 6
    VERIFY_RANGE_PROOF_U64 = 7
    VERIFY_BATCHED_RANGE_PROOF_U64 = 8


# Compute units charged by the proof program per verification
PROOF_COMPUTE_UNITS: Dict[ProofInstruction, int] = {
    ProofInstruction.CLOSE_CONTEXT_STATE: 3_000,
    ProofInstruction.VERIFY_ZERO_BALANCE: 6_000,
    ProofInstruction.VERIFY_WITHDRAW: 160_000,
    ProofInstruction.VERIFY_CIPHERTEXT_CIPHERTEXT_EQUALITY: 40_000,
    ProofInstruction.VERIFY_TRANSFER: 300_000,
    ProofInstruction.VERIFY_TRANSFER_WITH_FEE: 407_000,
    ProofInstruction.VERIFY_PUBKEY_VALIDITY: 2_600,
    ProofInstruction.VERIFY_RANGE_PROOF_U64: 110_000,
    ProofInstruction.VERIFY_BATCHED_RANGE_PROOF_U64: 111_000,
}
CONTEXT_INIT_COMPUTE_UNITS = 5_000

# Context account sizes: authority 32 | proof type 1 | context data
TRANSFER_CONTEXT_SPACE = 321
WITHDRAW_CONTEXT_SPACE = 169


def rent_exempt_lamports(space: int) -> int:
    """Minimum balance for an account of `space` bytes to be rent exempt."""
    return (ACCOUNT_STORAGE_OVERHEAD + space) * LAMPORTS_PER_BYTE_YEAR * RENT_EXEMPTION_YEARS


# =============================================================================
# Operations
# =============================================================================


class AccountRole(IntEnum):
    READONLY = 0
    READONLY_SIGNER = 1
    WRITABLE = 2
    WRITABLE_SIGNER = 3

    @property
    def is_signer(self) -> bool:
        return self in (AccountRole.READONLY_SIGNER, AccountRole.WRITABLE_SIGNER)

    @property
    def is_writable(self) -> bool:
        return self in (AccountRole.WRITABLE, AccountRole.WRITABLE_SIGNER)


@dataclass(frozen=True)
class AccountMeta:
    address: bytes
    role: AccountRole

    def __post_init__(self):
        valid, err = validate_address(self.address)
        if not valid:
            raise ValueError(err)


@dataclass(frozen=True)
class Operation:
    """One instruction: target program, ordered account references, payload."""
    program_id: bytes
    accounts: List[AccountMeta] = field(default_factory=list)
    data: bytes = b""

    def to_dict(self) -> dict:
        return {
            "program_id": base58.b58encode(self.program_id).decode(),
            "accounts": [
                {"address": base58.b58encode(a.address).decode(), "role": int(a.role)}
                for a in self.accounts
            ],
            "data": self.data.hex(),
        }

    @property
    def signers(self) -> List[bytes]:
        return [a.address for a in self.accounts if a.role.is_signer]


def _require(check) -> None:
    valid, err = check
    if not valid:
        raise ValueError(err)


def _extension_data(sub_op: ConfidentialTransferInstruction, payload: bytes = b"") -> bytes:
    return bytes([CONFIDENTIAL_TRANSFER_EXTENSION, int(sub_op)]) + payload


# =============================================================================
# Confidential Transfer Extension
# =============================================================================


def initialize_mint(
    mint: bytes,
    authority: bytes,
    auditor_public_key: bytes,
    auto_approve: bool = True,
) -> Operation:
    """InitializeMint: auto_approve u8 | authority 32 | auditor ElGamal key 32"""
    _require(validate_address(authority, "authority"))
    _require(validate_point(auditor_public_key, "auditor_public_key"))
    payload = struct.pack("<B32s32s", 1 if auto_approve else 0, authority, auditor_public_key)
    return Operation(
        program_id=TOKEN_2022_PROGRAM_ID,
        accounts=[AccountMeta(mint, AccountRole.WRITABLE)],
        data=_extension_data(ConfidentialTransferInstruction.INITIALIZE_MINT, payload),
    )


def configure_account(
    account: bytes,
    mint: bytes,
    owner: bytes,
    elgamal_public_key: bytes,
    max_pending_credits: int = DEFAULT_MAX_PENDING_CREDITS,
) -> Operation:
    """ConfigureAccount: ElGamal key 32 | maximum pending balance credit counter u64"""
    _require(validate_point(elgamal_public_key, "elgamal_public_key"))
    _require(validate_amount(max_pending_credits, "max_pending_credits"))
    payload = struct.pack("<32sQ", elgamal_public_key, max_pending_credits)
    return Operation(
        program_id=TOKEN_2022_PROGRAM_ID,
        accounts=[
            AccountMeta(account, AccountRole.WRITABLE),
            AccountMeta(mint, AccountRole.READONLY),
            AccountMeta(owner, AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(ConfidentialTransferInstruction.CONFIGURE_ACCOUNT, payload),
    )


def transfer(source: bytes, destination: bytes, mint: bytes, owner: bytes, context: bytes) -> Operation:
    """Transfer consuming a verified transfer proof context."""
    return Operation(
        program_id=TOKEN_2022_PROGRAM_ID,
        accounts=[
            AccountMeta(source, AccountRole.WRITABLE),
            AccountMeta(destination, AccountRole.WRITABLE),
            AccountMeta(mint, AccountRole.READONLY),
            AccountMeta(owner, AccountRole.READONLY_SIGNER),
            AccountMeta(context, AccountRole.READONLY),
        ],
        data=_extension_data(ConfidentialTransferInstruction.TRANSFER),
    )


def apply_pending_balance(account: bytes, owner: bytes, expected_pending_credits: int) -> Operation:
    """ApplyPendingBalance: expected pending balance credit counter u64"""
    _require(validate_amount(expected_pending_credits, "expected_pending_credits"))
    return Operation(
        program_id=TOKEN_2022_PROGRAM_ID,
        accounts=[
            AccountMeta(account, AccountRole.WRITABLE),
            AccountMeta(owner, AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(
            ConfidentialTransferInstruction.APPLY_PENDING_BALANCE,
            struct.pack("<Q", expected_pending_credits),
        ),
    )


def enable_confidential_credits(account: bytes, owner: bytes) -> Operation:
    return Operation(
        program_id=TOKEN_2022_PROGRAM_ID,
        accounts=[
            AccountMeta(account, AccountRole.WRITABLE),
            AccountMeta(owner, AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(ConfidentialTransferInstruction.ENABLE_CONFIDENTIAL_CREDITS),
    )


def disable_confidential_credits(account: bytes, owner: bytes) -> Operation:
    return Operation(
        program_id=TOKEN_2022_PROGRAM_ID,
        accounts=[
            AccountMeta(account, AccountRole.WRITABLE),
            AccountMeta(owner, AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(ConfidentialTransferInstruction.DISABLE_CONFIDENTIAL_CREDITS),
    )


def withdraw(account: bytes, mint: bytes, owner: bytes, context: bytes, amount: int) -> Operation:
    """Withdraw: amount u64, consuming a verified withdraw proof context."""
    _require(validate_amount(amount))
    return Operation(
        program_id=TOKEN_2022_PROGRAM_ID,
        accounts=[
            AccountMeta(account, AccountRole.WRITABLE),
            AccountMeta(mint, AccountRole.READONLY),
            AccountMeta(owner, AccountRole.READONLY_SIGNER),
            AccountMeta(context, AccountRole.READONLY),
        ],
        data=_extension_data(ConfidentialTransferInstruction.WITHDRAW, struct.pack("<Q", amount)),
    )


def deposit(account: bytes, mint: bytes, owner: bytes, amount: int) -> Operation:
    """Deposit: amount u64, public balance into pending confidential balance."""
    _require(validate_amount(amount))
    return Operation(
        program_id=TOKEN_2022_PROGRAM_ID,
        accounts=[
            AccountMeta(account, AccountRole.WRITABLE),
            AccountMeta(mint, AccountRole.READONLY),
            AccountMeta(owner, AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(ConfidentialTransferInstruction.DEPOSIT, struct.pack("<Q", amount)),
    )


# =============================================================================
# Proof Program
# =============================================================================


def verify_proof(
    instruction: ProofInstruction,
    proof_data: bytes,
    context: bytes,
    context_authority: bytes,
) -> Operation:
    """Verify a proof and store the verified context in `context`."""
    return Operation(
        program_id=ZK_PROOF_PROGRAM_ID,
        accounts=[
            AccountMeta(context, AccountRole.WRITABLE),
            AccountMeta(context_authority, AccountRole.READONLY),
        ],
        data=bytes([int(instruction)]) + bytes(proof_data),
    )


def close_context_state(context: bytes, authority: bytes, rent_recipient: bytes) -> Operation:
    """Close a proof context and return its lamports."""
    return Operation(
        program_id=ZK_PROOF_PROGRAM_ID,
        accounts=[
            AccountMeta(context, AccountRole.WRITABLE),
            AccountMeta(authority, AccountRole.WRITABLE_SIGNER),
            AccountMeta(rent_recipient, AccountRole.WRITABLE),
        ],
        data=bytes([int(ProofInstruction.CLOSE_CONTEXT_STATE)]),
    )


# =============================================================================
# System Program
# =============================================================================


def create_account(payer: bytes, new_account: bytes, lamports: int, space: int, owner: bytes) -> Operation:
    """System CreateAccount: u32 0 | lamports u64 | space u64 | owner 32"""
    _require(validate_address(owner, "owner"))
    return Operation(
        program_id=SYSTEM_PROGRAM_ID,
        accounts=[
            AccountMeta(payer, AccountRole.WRITABLE_SIGNER),
            AccountMeta(new_account, AccountRole.WRITABLE_SIGNER),
        ],
        data=struct.pack("<IQQ32s", 0, lamports, space, owner),
    )
