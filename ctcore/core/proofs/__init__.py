"""Range, equality and composite transfer/withdraw proofs"""
from ctcore.core.proofs.generator import ProofGenerator
from ctcore.core.proofs.range_proof import prove_range, verify_range
from ctcore.core.proofs.sigma import (
    CiphertextCommitmentEqualityProof,
    CiphertextEqualityProof,
    prove_ciphertext_commitment_equality,
    prove_ciphertext_equality,
    verify_ciphertext_commitment_equality,
    verify_ciphertext_equality,
)

__all__ = [
    "ProofGenerator",
    "prove_range",
    "verify_range",
    "CiphertextEqualityProof",
    "CiphertextCommitmentEqualityProof",
    "prove_ciphertext_equality",
    "verify_ciphertext_equality",
    "prove_ciphertext_commitment_equality",
    "verify_ciphertext_commitment_equality",
]
