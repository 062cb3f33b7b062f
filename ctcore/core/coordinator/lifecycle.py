"""
Proof context lifecycle.

A proof context is an ephemeral, rent-funded account that holds a verified
proof until the transfer or withdraw that references it executes:

    DRAFT -> PROOF_GENERATED -> CONTEXT_INITIALIZED -> PROOF_SUBMITTED
          -> CONSUMED -> CLOSED
                      \\-> ABANDONED -> CLOSED   (out-of-band cleanup)

Any state before CLOSED may drop to ABANDONED when a step fails. Contexts
that were funded (allocated) and not yet closed hold rent and must be
reconciled through the cleanup helper.
"""

import secrets
import struct
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

from ctcore.crypto import sha256
from ctcore.core.config import ContextAddressing
from ctcore.core.errors import InvalidStateTransition
from ctcore.utils.logger import get_logger

logger = get_logger("coordinator")

CONTEXT_ADDRESS_DOMAIN = b"ctcore/proof-context"
SESSION_SIZE = 16


class ContextState(IntEnum):
    """State of one elementary operation's proof context."""
    DRAFT = 0                  # Inputs validated, balance checked
    PROOF_GENERATED = 1        # Proof artifacts produced
    CONTEXT_INITIALIZED = 2    # Context account requested from the funder
    PROOF_SUBMITTED = 3        # Verify instruction submitted with the context
    CONSUMED = 4               # Transfer/withdraw referencing it executed
    CLOSED = 5                 # Rent reclaimed
    ABANDONED = 6              # Left open; needs out-of-band close


_TRANSITIONS: Dict[ContextState, Tuple[ContextState, ...]] = {
    ContextState.DRAFT: (ContextState.PROOF_GENERATED, ContextState.ABANDONED),
    ContextState.PROOF_GENERATED: (ContextState.CONTEXT_INITIALIZED, ContextState.ABANDONED),
    ContextState.CONTEXT_INITIALIZED: (ContextState.PROOF_SUBMITTED, ContextState.ABANDONED),
    ContextState.PROOF_SUBMITTED: (ContextState.CONSUMED, ContextState.ABANDONED),
    ContextState.CONSUMED: (ContextState.CLOSED, ContextState.ABANDONED),
    ContextState.ABANDONED: (ContextState.CLOSED,),
    ContextState.CLOSED: (),
}


def can_transition(current: ContextState, target: ContextState) -> bool:
    return target in _TRANSITIONS[current]


@dataclass
class ProofContext:
    """
    Tracks one proof context through its lifecycle.

    Attributes:
        address: Context account address (32 bytes)
        kind: "transfer" or "withdraw"
        authority: Account allowed to close the context
        space: Account size in bytes
        lamports: Rent deposited when the context is created
        state: Current lifecycle state
        allocated: True once the creating operation was handed to the sink
        history: (state, timestamp) for every state entered
    """
    address: bytes
    kind: str
    authority: bytes
    space: int
    lamports: int = 0
    state: ContextState = ContextState.DRAFT
    allocated: bool = False
    error: Optional[str] = None
    history: List[Tuple[ContextState, float]] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append((self.state, time.time()))

    def transition(self, target: ContextState, error: Optional[str] = None) -> None:
        """
        Move to `target`.

        Raises:
            InvalidStateTransition: target not reachable from the current state
        """
        if not can_transition(self.state, target):
            raise InvalidStateTransition(
                f"Context {self.address.hex()[:16]}: {self.state.name} -> {target.name} not allowed"
            )
        self.state = target
        if error is not None:
            self.error = error
        self.history.append((target, time.time()))

    def abandon(self, error: str) -> None:
        """Mark abandoned unless already closed or abandoned."""
        if self.state in (ContextState.CLOSED, ContextState.ABANDONED):
            return
        self.transition(ContextState.ABANDONED, error)
        logger.warning(f"Context {self.address.hex()[:16]} abandoned: {error}")

    @property
    def is_open(self) -> bool:
        """Funded and not closed, i.e. still holding rent."""
        return self.allocated and self.state != ContextState.CLOSED

    @property
    def needs_cleanup(self) -> bool:
        return self.allocated and self.state == ContextState.ABANDONED

    @property
    def states(self) -> List[ContextState]:
        return [state for state, _ in self.history]

    def to_dict(self) -> dict:
        return {
            "address": self.address.hex(),
            "kind": self.kind,
            "state": self.state.name,
            "allocated": self.allocated,
            "lamports": self.lamports,
            "error": self.error,
            "history": [(state.name, ts) for state, ts in self.history],
        }


# =============================================================================
# Address Allocation
# =============================================================================


class ContextAddressAllocator:
    """
    Produces context addresses that cannot collide between concurrent
    operations, allocator instances or processes.

    DERIVED: sha256(domain | sender | session | u64 nonce). The nonce is
             monotonic per sender; the 16-byte session is drawn from the
             OS CSPRNG per allocator unless supplied.
    RANDOM:  32 bytes from the OS CSPRNG.
    """

    def __init__(
        self,
        mode: ContextAddressing = ContextAddressing.DERIVED,
        session: Optional[bytes] = None,
    ):
        """
        Args:
            mode: Addressing scheme
            session: Fixed session salt (16 bytes), to reproduce addresses
        """
        self.mode = ContextAddressing(mode)
        if session is None:
            session = secrets.token_bytes(SESSION_SIZE)
        if len(session) != SESSION_SIZE:
            raise ValueError(f"session must be {SESSION_SIZE} bytes")
        self.session = bytes(session)
        self._nonces: Dict[bytes, int] = {}
        self._lock = threading.Lock()

    def next_address(self, sender: bytes) -> bytes:
        if self.mode is ContextAddressing.RANDOM:
            return secrets.token_bytes(32)
        with self._lock:
            nonce = self._nonces.get(sender, 0)
            self._nonces[sender] = nonce + 1
        return sha256(CONTEXT_ADDRESS_DOMAIN + bytes(sender) + self.session + struct.pack("<Q", nonce))

    def nonce_for(self, sender: bytes) -> int:
        """Next nonce that will be used for sender."""
        with self._lock:
            return self._nonces.get(sender, 0)
