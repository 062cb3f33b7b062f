"""On-chain encodings: instructions, program ids and account parsing"""
from ctcore.chain.accounts import (
    ConfidentialAccountState,
    encode_account,
    parse_confidential_account,
)
from ctcore.chain.instructions import (
    CONTEXT_INIT_COMPUTE_UNITS,
    PROOF_COMPUTE_UNITS,
    SYSTEM_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TRANSFER_CONTEXT_SPACE,
    WITHDRAW_CONTEXT_SPACE,
    ZK_PROOF_PROGRAM_ID,
    AccountMeta,
    AccountRole,
    ConfidentialTransferInstruction,
    Operation,
    ProofInstruction,
    rent_exempt_lamports,
)

__all__ = [
    "ConfidentialAccountState",
    "encode_account",
    "parse_confidential_account",
    "CONTEXT_INIT_COMPUTE_UNITS",
    "PROOF_COMPUTE_UNITS",
    "SYSTEM_PROGRAM_ID",
    "TOKEN_2022_PROGRAM_ID",
    "TRANSFER_CONTEXT_SPACE",
    "WITHDRAW_CONTEXT_SPACE",
    "ZK_PROOF_PROGRAM_ID",
    "AccountMeta",
    "AccountRole",
    "ConfidentialTransferInstruction",
    "Operation",
    "ProofInstruction",
    "rent_exempt_lamports",
]
