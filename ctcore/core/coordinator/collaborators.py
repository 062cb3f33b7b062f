"""
External collaborators the coordinator talks to.

The coordinator never builds transactions, signs or confirms anything
itself. It hands ordered operations plus the addresses that must sign to a
submission sink, reads account blobs through an account-data source and
asks a resource funder for the operations that create and close proof
contexts.
"""

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from ctcore.chain import instructions
from ctcore.chain.instructions import Operation


@runtime_checkable
class SubmissionSink(Protocol):
    """Accepts an ordered operation set; returns a correlation handle."""

    async def submit(self, operations: Sequence[Operation], signers: Sequence[bytes]) -> str:
        ...


@runtime_checkable
class AccountDataSource(Protocol):
    """Returns raw account bytes, or None when the account does not exist."""

    async def get_account_data(self, address: bytes) -> Optional[bytes]:
        ...


@runtime_checkable
class ResourceFunder(Protocol):
    """Creates and funds proof contexts, and reclaims their rent."""

    def rent_for(self, space: int) -> int:
        ...

    def fund_context(self, payer: bytes, context: bytes, space: int) -> List[Operation]:
        ...

    def reclaim_rent(self, context: bytes, authority: bytes, rent_recipient: bytes) -> List[Operation]:
        ...


class RentExemptFunder:
    """
    Funds contexts with a system CreateAccount owned by the proof program,
    deposited at the rent-exempt minimum.
    """

    def __init__(self, owner_program: bytes = instructions.ZK_PROOF_PROGRAM_ID):
        self.owner_program = owner_program

    def rent_for(self, space: int) -> int:
        return instructions.rent_exempt_lamports(space)

    def fund_context(self, payer: bytes, context: bytes, space: int) -> List[Operation]:
        return [instructions.create_account(payer, context, self.rent_for(space), space, self.owner_program)]

    def reclaim_rent(self, context: bytes, authority: bytes, rent_recipient: bytes) -> List[Operation]:
        return [instructions.close_context_state(context, authority, rent_recipient)]


def collect_signers(operations: Sequence[Operation]) -> List[bytes]:
    """Distinct signer addresses in first-seen order."""
    seen = []
    for op in operations:
        for address in op.signers:
            if address not in seen:
                seen.append(address)
    return seen
