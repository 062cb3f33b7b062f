"""
Integration tests for the transfer coordinator.

Runs real proofs against in-memory collaborators (submission sink,
account-data source) and checks:
1. Batch packing and balance threading across sub-batches
2. Operation set layout per transfer and withdraw
3. Up-front sufficiency and recipient key checks
4. Context lifecycle with and without auto-cleanup
5. Partial failure and timeout reporting
6. Per-sender serialization and lock release
7. Account state fetching and balance decryption
"""

import asyncio

import pytest

from ctcore.chain.accounts import ConfidentialAccountState, encode_account
from ctcore.chain.instructions import (
    SYSTEM_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    ZK_PROOF_PROGRAM_ID,
    ProofInstruction,
)
from ctcore.crypto import IDENTITY, BackendKind, get_backend
from ctcore.core.config import CoreConfig
from ctcore.core.coordinator import (
    AccountBalances,
    BatchTransferRequest,
    ContextState,
    SubmissionSink,
    TransferCoordinator,
)
from ctcore.core.encryption import EncryptionEngine
from ctcore.core.errors import (
    InsufficientBalance,
    InvalidProof,
    PartialBatchError,
    ResourceBudgetExceeded,
    SubmissionError,
    SubmissionTimeout,
)
from ctcore.core.proofs import ProofGenerator
from ctcore.core.types import DECRYPTION_AMBIGUOUS, Ciphertext, TransferParticipant, TransferProof

SOURCE = bytes([1]) * 32
OWNER = bytes([2]) * 32
MINT = bytes([3]) * 32


# =============================================================================
# In-memory collaborators
# =============================================================================


class RecordingSink:
    """Accepts every operation set unless told to fail or stall."""

    def __init__(self, fail_on=None, delay=0.0):
        self.fail_on = fail_on
        self.delay = delay
        self.calls = []
        self.events = []

    async def submit(self, operations, signers):
        index = len(self.calls)
        self.calls.append((list(operations), list(signers)))
        self.events.append(("start", index))
        if self.delay:
            await asyncio.sleep(self.delay)
        self.events.append(("end", index))
        if self.fail_on is not None and index == self.fail_on:
            raise RuntimeError("blockhash expired")
        return f"sig-{index}"


class DictAccountSource:
    def __init__(self, accounts):
        self.accounts = accounts

    async def get_account_data(self, address):
        return self.accounts.get(address)


class RejectingProver(ProofGenerator):
    """Generates honest proofs but reports every transfer proof invalid."""

    def verify_transfer_proof(self, *args):
        return False, "rejected for test"


class ExhaustedProver(ProofGenerator):
    """Verifies the first `accept` transfer proofs honestly, then rejects."""

    def __init__(self, engine, accept):
        super().__init__(engine)
        self.accept = accept

    def verify_transfer_proof(self, *args):
        if self.accept <= 0:
            return False, "rejected for test"
        self.accept -= 1
        return super().verify_transfer_proof(*args)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def engine():
    return EncryptionEngine(get_backend(BackendKind.AUTO))


@pytest.fixture
def prover(engine):
    return ProofGenerator(engine)


@pytest.fixture
def sender(engine):
    return engine.generate_keypair(seed=b"coordinator-sender")


@pytest.fixture
def recipients(engine):
    """Five recipients with their keypairs."""
    out = []
    for i in range(5):
        kp = engine.generate_keypair(seed=f"recipient-{i}".encode())
        participant = TransferParticipant(address=bytes([10 + i]) * 32, public_key=kp.public_key, amount=10 * (i + 1))
        out.append((participant, kp))
    return out


def _request(engine, sender, recipients, balance=1000):
    return BatchTransferRequest(
        sender_keypair=sender,
        source=SOURCE,
        owner=OWNER,
        mint=MINT,
        balance=engine.encrypt(balance, sender.public_key),
        recipients=[p for p, _ in recipients],
    )


def _coordinator(prover, sink, **config):
    config.setdefault("max_compute_units", 200_000)
    config.setdefault("transfer_compute_units", 100_000)
    return TransferCoordinator(prover, sink, config=CoreConfig(**config))


# =============================================================================
# Tests
# =============================================================================


class TestBatchPacking:
    """Sub-batches stay under the ceiling and thread the balance."""

    def test_sink_is_a_submission_sink(self):
        assert isinstance(RecordingSink(), SubmissionSink)

    def test_plan_sizes(self, prover, recipients):
        coordinator = _coordinator(prover, RecordingSink())
        plan = coordinator.plan_batches([p for p, _ in recipients])
        assert [len(group) for group in plan] == [2, 2, 1]

    @pytest.mark.parametrize("n,cost,ceiling,expected", [
        (5, 100_000, 200_000, 3),
        (4, 100_000, 200_000, 2),
        (5, 300_000, 1_400_000, 2),
        (3, 200_000, 200_000, 3),
        (1, 1, 1_400_000, 1),
    ])
    def test_sub_batch_count(self, prover, recipients, n, cost, ceiling, expected):
        coordinator = _coordinator(prover, RecordingSink(), max_compute_units=ceiling)
        legs = [recipients[i % 5][0] for i in range(n)]
        plan = coordinator.plan_batches(legs, unit_cost=cost)
        assert len(plan) == expected == -(-n * cost // ceiling)
        assert all(len(group) * cost <= ceiling for group in plan)
        assert [p for group in plan for p in group] == legs

    def test_single_item_over_ceiling(self, prover, recipients):
        coordinator = _coordinator(prover, RecordingSink())
        with pytest.raises(ResourceBudgetExceeded) as exc_info:
            coordinator.plan_batches([recipients[0][0]], unit_cost=250_000)
        assert exc_info.value.ceiling == 200_000

    def test_batch_transfer(self, engine, prover, sender, recipients):
        sink = RecordingSink()
        coordinator = _coordinator(prover, sink, verify_before_submit=False)
        request = _request(engine, sender, recipients)

        result = asyncio.run(coordinator.batch_transfer(request))

        assert len(result.sub_batches) == 3
        assert len(sink.calls) == 3
        assert result.signatures == ["sig-0", "sig-1", "sig-2"]
        assert all(sb.compute_units <= 200_000 for sb in result.sub_batches)
        # 1000 - (10 + 20 + 30 + 40 + 50)
        assert engine.decrypt(result.final_balance, sender.secret_key) == 850

        items = [item for sb in result.sub_batches for item in sb.items]
        for item, (participant, kp) in zip(items, recipients):
            assert item.recipient == participant
            assert engine.decrypt(item.proof.dest_ciphertext, kp.secret_key) == participant.amount

    def test_balance_threads_between_sub_batches(self, engine, prover, sender, recipients):
        coordinator = _coordinator(prover, RecordingSink(), verify_before_submit=False)
        result = asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients)))
        first, second, _ = result.sub_batches
        assert engine.decrypt(first.new_source_balance, sender.secret_key) == 970
        assert engine.decrypt(second.new_source_balance, sender.secret_key) == 900
        # Every proof spends the previous item's balance
        spent_from = result.initial_balance
        for sb in result.sub_batches:
            for item in sb.items:
                proof = item.proof.transfer_proof
                expected = engine.subtract(spent_from, proof.encrypted_transfer_amount)
                assert proof.new_source_commitment == expected.commitment
                spent_from = item.new_source_balance

    def test_contexts_closed_with_auto_cleanup(self, engine, prover, sender, recipients):
        coordinator = _coordinator(prover, RecordingSink(), verify_before_submit=False)
        result = asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients)))
        assert len(result.contexts) == 5
        assert len({c.address for c in result.contexts}) == 5
        assert all(c.state == ContextState.CLOSED for c in result.contexts)
        assert result.open_contexts == []


class TestOperationLayout:
    """What a single transfer or withdraw hands to the sink."""

    def test_transfer_operations(self, engine, prover, sender, recipients):
        sink = RecordingSink()
        coordinator = _coordinator(prover, sink)
        participant = recipients[0][0]
        balance = engine.encrypt(100, sender.public_key)

        result = asyncio.run(coordinator.transfer(sender, SOURCE, OWNER, MINT, balance, participant))

        operations, signers = sink.calls[0]
        context = result.contexts[0]
        assert [op.program_id for op in operations] == [
            SYSTEM_PROGRAM_ID, ZK_PROOF_PROGRAM_ID, TOKEN_2022_PROGRAM_ID, ZK_PROOF_PROGRAM_ID,
        ]
        verify = operations[1]
        assert verify.data[0] == ProofInstruction.VERIFY_TRANSFER
        assert TransferProof.from_bytes(verify.data[1:]) == result.sub_batches[0].items[0].proof.transfer_proof
        assert operations[2].data == bytes([25, 2])
        assert operations[2].accounts[1].address == participant.address
        assert operations[2].accounts[4].address == context.address
        assert signers == [OWNER, context.address]
        assert context.states == [
            ContextState.DRAFT,
            ContextState.PROOF_GENERATED,
            ContextState.CONTEXT_INITIALIZED,
            ContextState.PROOF_SUBMITTED,
            ContextState.CONSUMED,
            ContextState.CLOSED,
        ]

    def test_withdraw(self, engine, prover, sender):
        sink = RecordingSink()
        coordinator = _coordinator(prover, sink)
        balance = engine.encrypt(300, sender.public_key)

        result = asyncio.run(coordinator.withdraw(sender, SOURCE, OWNER, MINT, balance, 120))

        assert result.signature == "sig-0"
        assert engine.decrypt(result.new_source_balance, sender.secret_key) == 180
        operations, _ = sink.calls[0]
        assert operations[1].data[0] == ProofInstruction.VERIFY_WITHDRAW
        assert operations[2].data == bytes([25, 6]) + (120).to_bytes(8, "little")
        assert result.context.kind == "withdraw"
        assert result.context.state == ContextState.CLOSED

    def test_withdraw_over_ceiling(self, engine, prover, sender):
        coordinator = _coordinator(prover, RecordingSink(), withdraw_compute_units=300_000)
        balance = engine.encrypt(300, sender.public_key)
        with pytest.raises(ResourceBudgetExceeded):
            asyncio.run(coordinator.withdraw(sender, SOURCE, OWNER, MINT, balance, 1))


class TestUpFrontChecks:
    """Nothing is generated or submitted when the request cannot succeed."""

    def test_insufficient_total(self, engine, prover, sender, recipients):
        sink = RecordingSink()
        coordinator = _coordinator(prover, sink)
        request = _request(engine, sender, recipients, balance=100)
        with pytest.raises(InsufficientBalance) as exc_info:
            asyncio.run(coordinator.batch_transfer(request))
        assert exc_info.value.requested == 150
        assert exc_info.value.available == 100
        assert sink.calls == []

    def test_insufficient_withdraw(self, engine, prover, sender):
        sink = RecordingSink()
        coordinator = _coordinator(prover, sink)
        balance = engine.encrypt(5, sender.public_key)
        with pytest.raises(InsufficientBalance):
            asyncio.run(coordinator.withdraw(sender, SOURCE, OWNER, MINT, balance, 6))
        assert sink.calls == []

    def test_empty_recipients(self, engine, prover, sender):
        coordinator = _coordinator(prover, RecordingSink())
        with pytest.raises(ValueError):
            asyncio.run(coordinator.batch_transfer(_request(engine, sender, [])))

    def test_bad_source_address(self, engine, prover, sender, recipients):
        coordinator = _coordinator(prover, RecordingSink())
        request = _request(engine, sender, recipients)
        request.source = b"\x01" * 5
        with pytest.raises(ValueError):
            asyncio.run(coordinator.batch_transfer(request))

    def test_bad_recipient_key(self, engine, prover, sender, recipients):
        sink = RecordingSink()
        coordinator = _coordinator(prover, sink, max_compute_units=100_000)
        bad = TransferParticipant(address=bytes([20]) * 32, public_key=IDENTITY, amount=20)
        request = _request(engine, sender, [recipients[0], (bad, None)])
        with pytest.raises(ValueError, match="recipient 1"):
            asyncio.run(coordinator.batch_transfer(request))
        assert sink.calls == []

    def test_local_verification_failure(self, engine, sender, recipients):
        sink = RecordingSink()
        coordinator = _coordinator(RejectingProver(engine), sink)
        request = _request(engine, sender, recipients[:1])
        with pytest.raises(InvalidProof):
            asyncio.run(coordinator.batch_transfer(request))
        assert sink.calls == []


class TestContextLeaks:
    """Contexts left open are reported and can be closed later."""

    def test_without_auto_cleanup(self, engine, prover, sender, recipients):
        sink = RecordingSink()
        coordinator = _coordinator(prover, sink, auto_cleanup=False, verify_before_submit=False)
        result = asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients[:2])))

        assert len(result.open_contexts) == 2
        assert all(c.state == ContextState.ABANDONED for c in result.open_contexts)
        # No close instruction inside the transfer set
        operations, _ = sink.calls[0]
        assert len(operations) == 6

        cleanup_ops = coordinator.build_cleanup_operations(result.contexts, OWNER, OWNER)
        assert len(cleanup_ops) == 2
        assert all(op.data == bytes([ProofInstruction.CLOSE_CONTEXT_STATE]) for op in cleanup_ops)

        signature = asyncio.run(coordinator.cleanup(result.contexts, OWNER, OWNER))
        assert signature == "sig-1"
        assert result.open_contexts == []
        assert asyncio.run(coordinator.cleanup(result.contexts, OWNER, OWNER)) is None

    def test_failed_sub_batch(self, engine, prover, sender, recipients):
        sink = RecordingSink(fail_on=1)
        coordinator = _coordinator(prover, sink, verify_before_submit=False)

        with pytest.raises(SubmissionError) as exc_info:
            asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients)))

        partial = exc_info.value.result
        assert len(sink.calls) == 2
        assert len(partial.sub_batches) == 1
        assert engine.decrypt(partial.final_balance, sender.secret_key) == 970
        assert [c.state for c in partial.contexts] == [
            ContextState.CLOSED, ContextState.CLOSED, ContextState.ABANDONED, ContextState.ABANDONED,
        ]
        assert len(partial.open_contexts) == 2
        assert "blockhash expired" in partial.open_contexts[0].error

    def test_later_sub_batch_fails_before_submission(self, engine, sender, recipients):
        sink = RecordingSink()
        coordinator = _coordinator(
            ExhaustedProver(engine, accept=1), sink, max_compute_units=100_000, auto_cleanup=False
        )

        with pytest.raises(PartialBatchError) as exc_info:
            asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients[:2])))

        error = exc_info.value
        assert isinstance(error, SubmissionError)
        assert isinstance(error.cause, InvalidProof)
        partial = error.result
        assert len(sink.calls) == 1
        assert partial.signatures == ["sig-0"]
        assert engine.decrypt(partial.final_balance, sender.secret_key) == 990
        # Sub-batch 0 went through with auto-cleanup off; its context still holds rent
        assert len(partial.open_contexts) == 1
        assert partial.open_contexts[0].error == "auto-cleanup disabled"
        assert coordinator._sender_locks == {}

    def test_first_sub_batch_failure_is_not_wrapped(self, engine, sender, recipients):
        coordinator = _coordinator(ExhaustedProver(engine, accept=0), RecordingSink(), max_compute_units=100_000)
        with pytest.raises(InvalidProof):
            asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients[:2])))

    def test_timeout(self, engine, prover, sender, recipients):
        sink = RecordingSink(delay=1.0)
        coordinator = _coordinator(prover, sink, submission_timeout_s=0.05, verify_before_submit=False)
        with pytest.raises(SubmissionTimeout) as exc_info:
            asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients[:1])))
        assert isinstance(exc_info.value, SubmissionError)
        context = exc_info.value.result.contexts[0]
        assert context.needs_cleanup
        assert context.error == "submission timed out"

    def test_failed_cleanup_keeps_contexts(self, engine, prover, sender, recipients):
        sink = RecordingSink(fail_on=1)
        coordinator = _coordinator(prover, sink, auto_cleanup=False, verify_before_submit=False)
        result = asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients[:1])))
        with pytest.raises(SubmissionError):
            asyncio.run(coordinator.cleanup(result.contexts, OWNER, OWNER))
        assert result.contexts[0].needs_cleanup


class TestSerialization:
    """Work for one sender never interleaves."""

    def test_same_sender_runs_sequentially(self, engine, prover, sender, recipients):
        sink = RecordingSink(delay=0.02)
        coordinator = _coordinator(prover, sink, verify_before_submit=False)

        async def run_two():
            return await asyncio.gather(
                coordinator.batch_transfer(_request(engine, sender, recipients[:1])),
                coordinator.batch_transfer(_request(engine, sender, recipients[1:2])),
            )

        asyncio.run(run_two())
        assert sink.events == [("start", 0), ("end", 0), ("start", 1), ("end", 1)]
        assert coordinator._sender_locks == {}

    def test_lock_released_after_failure(self, engine, prover, sender, recipients):
        coordinator = _coordinator(prover, RecordingSink())
        with pytest.raises(InsufficientBalance):
            asyncio.run(coordinator.batch_transfer(_request(engine, sender, recipients, balance=1)))
        assert coordinator._sender_locks == {}

    def test_coordinators_never_share_context_addresses(self, engine, prover, sender, recipients):
        first = _coordinator(prover, RecordingSink(), verify_before_submit=False)
        second = _coordinator(prover, RecordingSink(), verify_before_submit=False)
        a = asyncio.run(first.batch_transfer(_request(engine, sender, recipients[:1])))
        b = asyncio.run(second.batch_transfer(_request(engine, sender, recipients[:1])))
        assert a.contexts[0].address != b.contexts[0].address


class TestFetchAccount:
    """Account state through the account-data source."""

    def test_fetch(self, engine, prover, sender):
        balance = engine.encrypt(42, sender.public_key)
        state = ConfidentialAccountState(
            elgamal_public_key=sender.public_key,
            pending_balance=engine.encrypt(0, sender.public_key),
            available_balance=balance,
            transfers_enabled=True,
            allow_confidential_credits=True,
            pending_balance_credit_counter=0,
            maximum_pending_balance_credit_counter=65536,
            expected_pending_balance_credit_counter=0,
            actual_pending_balance_credit_counter=0,
        )
        source = DictAccountSource({SOURCE: encode_account(state)})
        coordinator = TransferCoordinator(prover, RecordingSink(), account_source=source)

        fetched = asyncio.run(coordinator.fetch_account(SOURCE))
        assert fetched == state
        assert engine.decrypt(fetched.available_balance, sender.secret_key) == 42
        assert asyncio.run(coordinator.fetch_account(OWNER)) is None

    def test_no_source(self, prover):
        coordinator = TransferCoordinator(prover, RecordingSink())
        with pytest.raises(ValueError):
            asyncio.run(coordinator.fetch_account(SOURCE))

    def test_balances(self, engine, prover, sender):
        state = ConfidentialAccountState(
            elgamal_public_key=sender.public_key,
            pending_balance=engine.encrypt(7, sender.public_key),
            available_balance=engine.encrypt(42, sender.public_key),
            transfers_enabled=True,
            allow_confidential_credits=True,
            pending_balance_credit_counter=1,
            maximum_pending_balance_credit_counter=65536,
            expected_pending_balance_credit_counter=0,
            actual_pending_balance_credit_counter=0,
        )
        source = DictAccountSource({SOURCE: encode_account(state)})
        coordinator = TransferCoordinator(prover, RecordingSink(), account_source=source)

        balances = asyncio.run(coordinator.fetch_balances(SOURCE, sender))
        assert balances == AccountBalances(available=42, pending=7, net_available=35)
        assert asyncio.run(coordinator.fetch_balances(OWNER, sender)) is None

    def test_malformed_balance_is_ambiguous(self, engine, prover, sender):
        state = ConfidentialAccountState(
            elgamal_public_key=sender.public_key,
            pending_balance=engine.encrypt(7, sender.public_key),
            available_balance=Ciphertext(commitment=b"\xff" * 32, handle=b"\xff" * 32),
            transfers_enabled=True,
            allow_confidential_credits=False,
            pending_balance_credit_counter=0,
            maximum_pending_balance_credit_counter=0,
            expected_pending_balance_credit_counter=0,
            actual_pending_balance_credit_counter=0,
        )
        coordinator = TransferCoordinator(prover, RecordingSink())
        balances = coordinator.decrypt_balances(state, sender)
        assert balances.available is DECRYPTION_AMBIGUOUS
        assert balances.net_available is DECRYPTION_AMBIGUOUS
        assert balances.pending == 7
