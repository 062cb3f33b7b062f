"""Transfer coordination, proof-context lifecycle and collaborator interfaces"""
from ctcore.core.coordinator.collaborators import (
    AccountDataSource,
    RentExemptFunder,
    ResourceFunder,
    SubmissionSink,
    collect_signers,
)
from ctcore.core.coordinator.coordinator import (
    AccountBalances,
    BatchTransferRequest,
    BatchTransferResult,
    PreparedOperation,
    SubBatchResult,
    TransferCoordinator,
    WithdrawResult,
)
from ctcore.core.coordinator.lifecycle import (
    ContextAddressAllocator,
    ContextState,
    ProofContext,
    can_transition,
)

__all__ = [
    "AccountDataSource",
    "RentExemptFunder",
    "ResourceFunder",
    "SubmissionSink",
    "collect_signers",
    "AccountBalances",
    "BatchTransferRequest",
    "BatchTransferResult",
    "PreparedOperation",
    "SubBatchResult",
    "TransferCoordinator",
    "WithdrawResult",
    "ContextAddressAllocator",
    "ContextState",
    "ProofContext",
    "can_transition",
]
