"""
Transfer Coordinator - packages proofs into submittable operation sets and
tracks the proof contexts they create.

Per elementary operation:
    1. Check balance, generate the proof                 (DRAFT -> PROOF_GENERATED)
    2. Fund a context via the resource funder           (-> CONTEXT_INITIALIZED)
    3. Verify-proof instruction writes into the context (-> PROOF_SUBMITTED)
    4. Transfer/withdraw instruction references it      (-> CONSUMED)
    5. Close instruction when auto-cleanup is on        (-> CLOSED, else ABANDONED)

Steps 2-5 for every item of a sub-batch go out as one operation set; the
submission sink is the only place this module awaits.

Balances are threaded: each prepared item spends the new balance of the
previous one, so all work for one sender runs under that sender's lock.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Sequence, Union

from ctcore.chain import instructions
from ctcore.chain.accounts import ConfidentialAccountState, parse_confidential_account
from ctcore.chain.instructions import Operation, ProofInstruction
from ctcore.core.config import CoreConfig
from ctcore.core.coordinator.collaborators import (
    AccountDataSource,
    RentExemptFunder,
    ResourceFunder,
    SubmissionSink,
    collect_signers,
)
from ctcore.core.coordinator.lifecycle import ContextAddressAllocator, ContextState, ProofContext
from ctcore.core.errors import (
    InsufficientBalance,
    InvalidProof,
    PartialBatchError,
    ResourceBudgetExceeded,
    SubmissionError,
    SubmissionTimeout,
)
from ctcore.core.types import (
    DECRYPTION_AMBIGUOUS,
    Ciphertext,
    DecryptionResult,
    EncryptionKeypair,
    TransferParticipant,
    TransferProofResult,
    WithdrawProofResult,
)
from ctcore.utils.logger import get_logger
from ctcore.utils.validation import validate_address, validate_batch

logger = get_logger("coordinator")


# =============================================================================
# Requests & Results
# =============================================================================


@dataclass
class PreparedOperation:
    """One elementary operation, ready to be submitted."""
    kind: str
    context: ProofContext
    operations: List[Operation]
    proof: Union[TransferProofResult, WithdrawProofResult]
    new_source_balance: Ciphertext
    compute_units: int
    recipient: Optional[TransferParticipant] = None


@dataclass
class SubBatchResult:
    """Outcome of one submitted operation set."""
    index: int
    signature: str
    items: List[PreparedOperation]
    new_source_balance: Ciphertext
    compute_units: int

    @property
    def contexts(self) -> List[ProofContext]:
        return [item.context for item in self.items]


@dataclass
class BatchTransferRequest:
    """
    One sender paying many recipients.

    Attributes:
        sender_keypair: Sender ElGamal keypair
        source: Sender token account
        owner: Sender wallet; signs, pays for and owns the contexts
        mint: Token mint
        balance: Sender's current available balance ciphertext
        recipients: Legs of the batch, in order
    """
    sender_keypair: EncryptionKeypair
    source: bytes
    owner: bytes
    mint: bytes
    balance: Ciphertext
    recipients: List[TransferParticipant]


@dataclass
class BatchTransferResult:
    """
    Sub-batches in submission order plus every context touched.

    On failure this is attached to the raised SubmissionError with the
    sub-batches that did go through.
    """
    initial_balance: Ciphertext
    sub_batches: List[SubBatchResult] = field(default_factory=list)
    contexts: List[ProofContext] = field(default_factory=list)

    @property
    def final_balance(self) -> Ciphertext:
        if not self.sub_batches:
            return self.initial_balance
        return self.sub_batches[-1].new_source_balance

    @property
    def open_contexts(self) -> List[ProofContext]:
        """Funded contexts not yet closed; these hold rent."""
        return [c for c in self.contexts if c.is_open]

    @property
    def signatures(self) -> List[str]:
        return [sb.signature for sb in self.sub_batches]


@dataclass
class WithdrawResult:
    signature: Optional[str]
    context: ProofContext
    new_source_balance: Ciphertext
    proof: WithdrawProofResult


@dataclass(frozen=True)
class AccountBalances:
    """
    Decrypted view of a confidential account.

    Each field is DECRYPTION_AMBIGUOUS when its ciphertext is malformed,
    under another key, or beyond the decryption bound.

    Attributes:
        available: Spendable balance
        pending: Credits not yet applied
        net_available: available - pending, computed homomorphically
    """
    available: DecryptionResult
    pending: DecryptionResult
    net_available: DecryptionResult


@dataclass
class _SenderLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


# =============================================================================
# Coordinator
# =============================================================================


class TransferCoordinator:
    """
    Sequences proof generation, context funding, submission and cleanup.

    `prover` is a ProofGenerator or an AccelerationShim; anything exposing
    `engine`, the generate_* and the verify_* proof methods works.
    """

    def __init__(
        self,
        prover,
        sink: SubmissionSink,
        funder: Optional[ResourceFunder] = None,
        config: Optional[CoreConfig] = None,
        account_source: Optional[AccountDataSource] = None,
    ):
        """
        Initialize coordinator.

        Args:
            prover: Proof generator (or shim with the same surface)
            sink: Submission sink for operation sets
            funder: Context funder (rent-exempt CreateAccount by default)
            config: Runtime configuration
            account_source: Needed only for fetch_account()
        """
        self.prover = prover
        self.sink = sink
        self.funder = funder or RentExemptFunder()
        self.config = config or CoreConfig()
        self.account_source = account_source
        self.allocator = ContextAddressAllocator(self.config.context_addressing)
        self._sender_locks: Dict[bytes, _SenderLock] = {}

        logger.debug(
            f"Coordinator ready: ceiling={self.config.max_compute_units} "
            f"auto_cleanup={self.config.auto_cleanup}"
        )

    @asynccontextmanager
    async def _serialized(self, sender: bytes) -> AsyncIterator[None]:
        """Hold the sender's lock. The entry is dropped once nobody holds or awaits it."""
        entry = self._sender_locks.get(sender)
        if entry is None:
            entry = self._sender_locks[sender] = _SenderLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._sender_locks[sender]

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def plan_batches(
        self,
        recipients: Sequence[TransferParticipant],
        unit_cost: Optional[int] = None,
    ) -> List[List[TransferParticipant]]:
        """
        Greedily pack consecutive recipients under the compute ceiling.

        Args:
            recipients: Legs in order
            unit_cost: Compute units per transfer (config default if None)

        Raises:
            ResourceBudgetExceeded: A single transfer exceeds the ceiling
        """
        cost = self.config.transfer_compute_units if unit_cost is None else unit_cost
        ceiling = self.config.max_compute_units
        if cost > ceiling:
            raise ResourceBudgetExceeded(cost, ceiling)

        batches: List[List[TransferParticipant]] = []
        current: List[TransferParticipant] = []
        running = 0
        for recipient in recipients:
            if current and running + cost > ceiling:
                batches.append(current)
                current, running = [], 0
            current.append(recipient)
            running += cost
        if current:
            batches.append(current)
        return batches

    def _available(self, keypair: EncryptionKeypair, balance: Ciphertext, requested: int) -> int:
        available = self.prover.engine.decrypt(balance, keypair.secret_key)
        if available is DECRYPTION_AMBIGUOUS:
            raise InsufficientBalance(requested, None)
        if available < requested:
            raise InsufficientBalance(requested, available)
        return available

    def _new_context(self, kind: str, owner: bytes, space: int) -> ProofContext:
        return ProofContext(
            address=self.allocator.next_address(owner),
            kind=kind,
            authority=owner,
            space=space,
            lamports=self.funder.rent_for(space),
        )

    # -------------------------------------------------------------------------
    # Preparation
    # -------------------------------------------------------------------------

    def prepare_transfer(
        self,
        sender_keypair: EncryptionKeypair,
        source: bytes,
        owner: bytes,
        mint: bytes,
        balance: Ciphertext,
        recipient: TransferParticipant,
    ) -> PreparedOperation:
        """
        Generate the proof and build the operations for one transfer.

        Raises:
            InsufficientBalance: balance below recipient.amount
            InvalidProof: local pre-verification failed
        """
        context = self._new_context("transfer", owner, instructions.TRANSFER_CONTEXT_SPACE)
        try:
            result = self.prover.generate_transfer_proof(
                balance, recipient.amount, sender_keypair, recipient.public_key
            )
            context.transition(ContextState.PROOF_GENERATED)

            if self.config.verify_before_submit:
                ok, reason = self.prover.verify_transfer_proof(
                    result.transfer_proof, balance, sender_keypair.public_key, recipient.public_key
                )
                if not ok:
                    raise InvalidProof(f"Transfer proof rejected locally: {reason}")

            operations = list(self.funder.fund_context(owner, context.address, context.space))
            context.transition(ContextState.CONTEXT_INITIALIZED)
            operations.append(instructions.verify_proof(
                ProofInstruction.VERIFY_TRANSFER,
                result.transfer_proof.to_bytes(),
                context.address,
                owner,
            ))
            operations.append(instructions.transfer(source, recipient.address, mint, owner, context.address))
            if self.config.auto_cleanup:
                operations.extend(self.funder.reclaim_rent(context.address, owner, owner))
        except Exception as e:
            context.abandon(str(e))
            raise

        return PreparedOperation(
            kind="transfer",
            context=context,
            operations=operations,
            proof=result,
            new_source_balance=result.new_source_balance,
            compute_units=self.config.transfer_compute_units,
            recipient=recipient,
        )

    def prepare_withdraw(
        self,
        keypair: EncryptionKeypair,
        account: bytes,
        owner: bytes,
        mint: bytes,
        balance: Ciphertext,
        amount: int,
    ) -> PreparedOperation:
        """
        Generate the proof and build the operations for one withdrawal.

        Raises:
            InsufficientBalance: balance below amount
            InvalidProof: local pre-verification failed
        """
        context = self._new_context("withdraw", owner, instructions.WITHDRAW_CONTEXT_SPACE)
        try:
            result = self.prover.generate_withdraw_proof(balance, amount, keypair)
            context.transition(ContextState.PROOF_GENERATED)

            if self.config.verify_before_submit:
                ok, reason = self.prover.verify_withdraw_proof(
                    result.withdraw_proof, balance, keypair.public_key, amount
                )
                if not ok:
                    raise InvalidProof(f"Withdraw proof rejected locally: {reason}")

            operations = list(self.funder.fund_context(owner, context.address, context.space))
            context.transition(ContextState.CONTEXT_INITIALIZED)
            operations.append(instructions.verify_proof(
                ProofInstruction.VERIFY_WITHDRAW,
                result.withdraw_proof.to_bytes(),
                context.address,
                owner,
            ))
            operations.append(instructions.withdraw(account, mint, owner, context.address, amount))
            if self.config.auto_cleanup:
                operations.extend(self.funder.reclaim_rent(context.address, owner, owner))
        except Exception as e:
            context.abandon(str(e))
            raise

        return PreparedOperation(
            kind="withdraw",
            context=context,
            operations=operations,
            proof=result,
            new_source_balance=result.new_source_balance,
            compute_units=self.config.withdraw_compute_units,
        )

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def _submit(self, operations: List[Operation], label: str) -> str:
        signers = collect_signers(operations)
        logger.info(f"Submitting {label}: {len(operations)} operations, {len(signers)} signers")
        return await asyncio.wait_for(
            self.sink.submit(operations, signers),
            timeout=self.config.submission_timeout_s,
        )

    async def _submit_items(self, items: List[PreparedOperation], label: str, result) -> str:
        """Submit prepared items as one set and advance their contexts."""
        operations = [op for item in items for op in item.operations]
        for item in items:
            item.context.allocated = True
            item.context.transition(ContextState.PROOF_SUBMITTED)

        try:
            signature = await self._submit(operations, label)
        except asyncio.TimeoutError as e:
            for item in items:
                item.context.abandon("submission timed out")
            raise SubmissionTimeout(
                f"{label} not accepted within {self.config.submission_timeout_s}s", result
            ) from e
        except Exception as e:
            for item in items:
                item.context.abandon(f"submission failed: {e}")
            raise SubmissionError(f"{label} failed: {e}", result) from e

        for item in items:
            item.context.transition(ContextState.CONSUMED)
            if self.config.auto_cleanup:
                item.context.transition(ContextState.CLOSED)
            else:
                item.context.abandon("auto-cleanup disabled")
        return signature

    async def batch_transfer(self, request: BatchTransferRequest) -> BatchTransferResult:
        """
        Pay every recipient, splitting into sub-batches under the ceiling.

        The total is checked against the decrypted balance before any proof
        is generated. Sub-batches run strictly in order, each one spending
        the balance left by the previous.

        Returns:
            BatchTransferResult (check open_contexts when auto-cleanup is off)

        Raises:
            InsufficientBalance: total exceeds the balance
            ResourceBudgetExceeded: one transfer alone exceeds the ceiling
            ValueError: malformed request or recipient public key
            InvalidProof: local pre-verification failed (first sub-batch)
            PartialBatchError: a later sub-batch failed before submission;
                carries the partial result and the cause
            SubmissionError / SubmissionTimeout: carries the partial result
        """
        valid, err = validate_batch(request.recipients, "recipients")
        if not valid:
            raise ValueError(err)
        if not request.recipients:
            raise ValueError("recipients must not be empty")
        for name in ("source", "owner", "mint"):
            valid, err = validate_address(getattr(request, name), name)
            if not valid:
                raise ValueError(err)
        for i, recipient in enumerate(request.recipients):
            self.prover.engine.check_amount(recipient.amount)
            valid, err = self.prover.engine.validate_public_key(recipient.public_key)
            if not valid:
                raise ValueError(f"recipient {i}: {err}")

        total = sum(r.amount for r in request.recipients)
        plan = self.plan_batches(request.recipients)
        result = BatchTransferResult(initial_balance=request.balance)

        async with self._serialized(request.owner):
            self._available(request.sender_keypair, request.balance, total)
            logger.info(
                f"Batch transfer: {len(request.recipients)} recipients in {len(plan)} sub-batches"
            )

            balance = request.balance
            for index, group in enumerate(plan):
                start = time.time()
                items = []
                try:
                    for recipient in group:
                        item = self.prepare_transfer(
                            request.sender_keypair,
                            request.source,
                            request.owner,
                            request.mint,
                            balance,
                            recipient,
                        )
                        items.append(item)
                        result.contexts.append(item.context)
                        balance = item.new_source_balance
                except Exception as e:
                    # Nothing of this sub-batch was submitted
                    for item in items:
                        item.context.abandon(f"sub-batch {index} not submitted: {e}")
                    if not result.sub_batches:
                        raise
                    raise PartialBatchError(
                        f"sub-batch {index} could not be prepared after "
                        f"{len(result.sub_batches)} accepted: {e}",
                        result,
                        e,
                    ) from e

                signature = await self._submit_items(items, f"sub-batch {index}", result)
                result.sub_batches.append(SubBatchResult(
                    index=index,
                    signature=signature,
                    items=items,
                    new_source_balance=balance,
                    compute_units=sum(item.compute_units for item in items),
                ))
                logger.debug(f"Sub-batch {index} accepted in {(time.time() - start) * 1000:.0f}ms")

        if result.open_contexts:
            logger.warning(f"{len(result.open_contexts)} proof contexts left open")
        return result

    async def transfer(
        self,
        sender_keypair: EncryptionKeypair,
        source: bytes,
        owner: bytes,
        mint: bytes,
        balance: Ciphertext,
        recipient: TransferParticipant,
    ) -> BatchTransferResult:
        """Single transfer; a batch of one."""
        return await self.batch_transfer(BatchTransferRequest(
            sender_keypair=sender_keypair,
            source=source,
            owner=owner,
            mint=mint,
            balance=balance,
            recipients=[recipient],
        ))

    async def withdraw(
        self,
        keypair: EncryptionKeypair,
        account: bytes,
        owner: bytes,
        mint: bytes,
        balance: Ciphertext,
        amount: int,
    ) -> WithdrawResult:
        """
        Withdraw a public amount from the encrypted balance.

        Raises:
            InsufficientBalance: amount exceeds the balance
            ResourceBudgetExceeded: withdraw cost exceeds the ceiling
            InvalidProof: local pre-verification failed
            SubmissionError / SubmissionTimeout: result attached
        """
        cost = self.config.withdraw_compute_units
        if cost > self.config.max_compute_units:
            raise ResourceBudgetExceeded(cost, self.config.max_compute_units)

        async with self._serialized(owner):
            self._available(keypair, balance, self.prover.engine.check_amount(amount))
            item = self.prepare_withdraw(keypair, account, owner, mint, balance, amount)
            result = WithdrawResult(
                signature=None,
                context=item.context,
                new_source_balance=item.new_source_balance,
                proof=item.proof,
            )
            result.signature = await self._submit_items([item], "withdraw", result)
        return result

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    def build_cleanup_operations(
        self,
        contexts: Sequence[ProofContext],
        authority: bytes,
        rent_recipient: bytes,
    ) -> List[Operation]:
        """
        Close operations for every abandoned, funded context in `contexts`.

        Contexts that were never funded or are already closed are skipped.
        """
        operations = []
        for context in contexts:
            if context.needs_cleanup:
                operations.extend(self.funder.reclaim_rent(context.address, authority, rent_recipient))
        return operations

    async def cleanup(
        self,
        contexts: Sequence[ProofContext],
        authority: bytes,
        rent_recipient: bytes,
    ) -> Optional[str]:
        """
        Submit close operations for abandoned contexts and mark them CLOSED.

        Returns:
            Submission handle, or None if nothing needed closing

        Raises:
            SubmissionError / SubmissionTimeout: contexts stay ABANDONED
        """
        pending = [c for c in contexts if c.needs_cleanup]
        operations = self.build_cleanup_operations(pending, authority, rent_recipient)
        if not operations:
            return None
        try:
            signature = await self._submit(operations, f"cleanup of {len(pending)} contexts")
        except asyncio.TimeoutError as e:
            raise SubmissionTimeout("Cleanup not accepted in time", list(pending)) from e
        except Exception as e:
            raise SubmissionError(f"Cleanup failed: {e}", list(pending)) from e
        for context in pending:
            context.transition(ContextState.CLOSED)
        logger.info(f"Closed {len(pending)} proof contexts")
        return signature

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def fetch_account(self, address: bytes) -> Optional[ConfidentialAccountState]:
        """
        Read the confidential transfer state of a token account.

        Returns:
            Parsed state, or None if the account or extension is missing

        Raises:
            AccountDataError: Truncated or malformed account data
        """
        if self.account_source is None:
            raise ValueError("No account data source configured")
        data = await self.account_source.get_account_data(address)
        if data is None:
            return None
        return parse_confidential_account(data)

    def decrypt_balances(self, state: ConfidentialAccountState, keypair: EncryptionKeypair) -> AccountBalances:
        """Decrypt the available and pending balances of a parsed account."""
        engine = self.prover.engine
        available = engine.decrypt(state.available_balance, keypair.secret_key)
        pending = engine.decrypt(state.pending_balance, keypair.secret_key)

        net_available = DECRYPTION_AMBIGUOUS
        if engine.validate_ciphertext(state.available_balance)[0] and \
                engine.validate_ciphertext(state.pending_balance)[0]:
            net = engine.subtract(state.available_balance, state.pending_balance)
            net_available = engine.decrypt(net, keypair.secret_key)
        return AccountBalances(available=available, pending=pending, net_available=net_available)

    async def fetch_balances(self, address: bytes, keypair: EncryptionKeypair) -> Optional[AccountBalances]:
        """fetch_account() then decrypt_balances(); None if there is no confidential state."""
        state = await self.fetch_account(address)
        if state is None:
            return None
        return self.decrypt_balances(state, keypair)
