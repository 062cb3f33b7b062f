"""
Acceleration Shim - one engine/prover surface over two implementations.

The reference path is the pure-Python backend; the accelerated path is the
libsodium backend. Availability is probed once at construction and each
call consults choose_path(), a pure function of (mode, availability,
operation). In AUTO only the allow-listed operations (encryption and range
proofs) go to the accelerated path.

If an accelerated call raises or exceeds accelerated_timeout_s, the failed
attempt is logged and recorded, then the same call is repeated on the
reference path. Input errors (ConfidentialTransferError) are deterministic
and propagate directly.

Both paths emit canonical encodings, so outputs from either can be mixed.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ctcore.crypto import AccelerationCapability, BackendKind, get_backend, probe_acceleration
from ctcore.core.config import AccelerationMode, CoreConfig
from ctcore.core.acceleration.telemetry import OperationStats, TelemetryBuffer
from ctcore.core.encryption import EncryptionEngine
from ctcore.core.errors import AccelerationFailure, ConfidentialTransferError
from ctcore.core.proofs import ProofGenerator
from ctcore.core.types import (
    Ciphertext,
    DecryptionResult,
    EncryptionKeypair,
    RangeProof,
    TransferProof,
    TransferProofResult,
    WithdrawProof,
    WithdrawProofResult,
)
from ctcore.utils.logger import get_logger

logger = get_logger("acceleration")


class ExecutionPath(Enum):
    REFERENCE = "reference"
    ACCELERATED = "accelerated"


# Operations AUTO may send to the accelerated path
ACCELERATED_OPERATIONS = frozenset({
    "encrypt",
    "encrypt_batch",
    "range_proof",
    "range_proof_batch",
})


class AccelerationShim:
    """
    Drop-in for EncryptionEngine + ProofGenerator with per-call path
    selection, fallback and telemetry.

    Each instance owns its telemetry and worker thread; create one per
    caller context and close() it when done.
    """

    def __init__(
        self,
        mode: Optional[AccelerationMode] = None,
        config: Optional[CoreConfig] = None,
        capability: Optional[AccelerationCapability] = None,
        reference: Optional[ProofGenerator] = None,
        accelerated: Optional[ProofGenerator] = None,
        telemetry: Optional[TelemetryBuffer] = None,
    ):
        """
        Initialize shim.

        Args:
            mode: Overrides config.acceleration_mode
            config: Runtime configuration
            capability: Probe result (probed now if omitted)
            reference: Reference-path generator (pure-Python backend by default)
            accelerated: Accelerated-path generator (sodium backend by default,
                when the probe reports it available)
            telemetry: Buffer to record into (fresh one by default)
        """
        self.config = config or CoreConfig()
        self.mode = AccelerationMode(mode if mode is not None else self.config.acceleration_mode)
        self.capability = capability or probe_acceleration()
        bound = self.config.decrypt_bound_bits

        self.reference = reference or ProofGenerator(
            EncryptionEngine(get_backend(BackendKind.REFERENCE), bound)
        )
        if accelerated is None and self.capability.available:
            accelerated = ProofGenerator(EncryptionEngine(get_backend(BackendKind.SODIUM), bound))
        self.accelerated = accelerated if self.capability.available else None

        self.telemetry = telemetry or TelemetryBuffer(self.config.telemetry_window)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

        if self.mode is AccelerationMode.FORCE_ACCELERATED and self.accelerated is None:
            logger.warning(
                f"Accelerated path forced but unavailable ({self.capability.reason}); "
                "using reference path"
            )
        logger.debug(f"Shim mode={self.mode.value} accelerated={self.accelerated is not None}")

    @property
    def engine(self) -> EncryptionEngine:
        """Reference engine; decryption and balance checks always use it."""
        return self.reference.engine

    @property
    def batch_threshold(self) -> int:
        return self.config.batch_threshold

    # -------------------------------------------------------------------------
    # Path selection
    # -------------------------------------------------------------------------

    def choose_path(self, operation: str) -> ExecutionPath:
        """Which implementation `operation` runs on. No side effects."""
        if self.accelerated is None or self.mode is AccelerationMode.FORCE_REFERENCE:
            return ExecutionPath.REFERENCE
        if self.mode is AccelerationMode.FORCE_ACCELERATED:
            return ExecutionPath.ACCELERATED
        if operation in ACCELERATED_OPERATIONS:
            return ExecutionPath.ACCELERATED
        return ExecutionPath.REFERENCE

    def _worker(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ctcore-accel")
            return self._executor

    def _call_accelerated(self, fn: Callable):
        timeout = self.config.accelerated_timeout_s
        try:
            if timeout is None:
                return fn()
            future = self._worker().submit(fn)
            try:
                return future.result(timeout=timeout)
            except FutureTimeout as e:
                future.cancel()
                raise AccelerationFailure(f"timed out after {timeout}s") from e
        except ConfidentialTransferError:
            raise
        except Exception as e:
            raise AccelerationFailure(f"{type(e).__name__}: {e}") from e

    def _run(self, operation: str, call: Callable[[ProofGenerator], object], path: Optional[ExecutionPath] = None):
        """Run `call` on the chosen generator, falling back to reference."""
        if path is None:
            path = self.choose_path(operation)
        if path is ExecutionPath.ACCELERATED:
            start = time.perf_counter()
            try:
                value = self._call_accelerated(lambda: call(self.accelerated))
            except AccelerationFailure as e:
                elapsed = (time.perf_counter() - start) * 1000
                self.telemetry.record(operation, elapsed, True, failed=True)
                logger.warning(
                    f"{operation}: accelerated path failed after {elapsed:.1f}ms ({e}), retrying on reference"
                )
            else:
                self.telemetry.record(operation, (time.perf_counter() - start) * 1000, True)
                return value

        start = time.perf_counter()
        value = call(self.reference)
        self.telemetry.record(operation, (time.perf_counter() - start) * 1000, False)
        return value

    def _batch_path(self, operation: str, size: int) -> Optional[ExecutionPath]:
        """Accelerated batch call only for batches at or above the threshold."""
        path = self.choose_path(operation)
        if path is ExecutionPath.ACCELERATED and size >= self.batch_threshold:
            return path
        return None

    # -------------------------------------------------------------------------
    # Encryption surface
    # -------------------------------------------------------------------------

    def generate_keypair(self, seed: Optional[bytes] = None) -> EncryptionKeypair:
        return self._run("generate_keypair", lambda g: g.engine.generate_keypair(seed))

    def encrypt(self, amount: int, public_key: bytes, randomness=None) -> Ciphertext:
        return self._run("encrypt", lambda g: g.engine.encrypt(amount, public_key, randomness))

    def encrypt_with_opening(self, amount: int, public_key: bytes, randomness=None) -> Tuple[Ciphertext, int]:
        return self._run("encrypt", lambda g: g.engine.encrypt_with_opening(amount, public_key, randomness))

    def encrypt_batch(self, amounts: Iterable[int], public_key: bytes) -> List[Ciphertext]:
        """
        Batch encryption. Below the batch threshold, items go through the
        single-item path one at a time.
        """
        amounts = list(amounts)
        path = self._batch_path("encrypt_batch", len(amounts))
        if path is not None:
            return self._run("encrypt_batch", lambda g: g.engine.encrypt_batch(amounts, public_key), path)
        return [self.encrypt(amount, public_key) for amount in amounts]

    def decrypt(self, ciphertext: Ciphertext, secret: int) -> DecryptionResult:
        return self._run("decrypt", lambda g: g.engine.decrypt(ciphertext, secret))

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._run("add", lambda g: g.engine.add(a, b))

    def subtract(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._run("subtract", lambda g: g.engine.subtract(a, b))

    def add_amount(self, ciphertext: Ciphertext, amount: int) -> Ciphertext:
        return self._run("add", lambda g: g.engine.add_amount(ciphertext, amount))

    def subtract_amount(self, ciphertext: Ciphertext, amount: int) -> Ciphertext:
        return self._run("subtract", lambda g: g.engine.subtract_amount(ciphertext, amount))

    def trivial_ciphertext(self, amount: int) -> Ciphertext:
        return self.engine.trivial_ciphertext(amount)

    def validate_public_key(self, public_key: bytes) -> Tuple[bool, str]:
        return self.engine.validate_public_key(public_key)

    def validate_ciphertext(self, ciphertext: Ciphertext) -> Tuple[bool, str]:
        return self.engine.validate_ciphertext(ciphertext)

    # -------------------------------------------------------------------------
    # Proof surface
    # -------------------------------------------------------------------------

    def generate_range_proof(self, amount: int, commitment: bytes, blinding: int) -> RangeProof:
        return self._run("range_proof", lambda g: g.generate_range_proof(amount, commitment, blinding))

    def generate_range_proofs(self, items: Iterable[Tuple[int, bytes, int]]) -> List[RangeProof]:
        items = list(items)
        path = self._batch_path("range_proof_batch", len(items))
        if path is not None:
            return self._run("range_proof_batch", lambda g: g.generate_range_proofs(items), path)
        return [self.generate_range_proof(*item) for item in items]

    def verify_range_proof(self, proof: RangeProof) -> bool:
        return self._run("verify_range_proof", lambda g: g.verify_range_proof(proof))

    def generate_transfer_proof(
        self,
        source_balance: Ciphertext,
        amount: int,
        sender_keypair: EncryptionKeypair,
        dest_public_key: bytes,
    ) -> TransferProofResult:
        return self._run(
            "transfer_proof",
            lambda g: g.generate_transfer_proof(source_balance, amount, sender_keypair, dest_public_key),
        )

    def verify_transfer_proof(
        self,
        proof: TransferProof,
        source_balance: Ciphertext,
        source_public_key: bytes,
        dest_public_key: bytes,
    ) -> Tuple[bool, str]:
        return self._run(
            "verify_transfer_proof",
            lambda g: g.verify_transfer_proof(proof, source_balance, source_public_key, dest_public_key),
        )

    def generate_withdraw_proof(
        self,
        balance: Ciphertext,
        amount: int,
        keypair: EncryptionKeypair,
    ) -> WithdrawProofResult:
        return self._run("withdraw_proof", lambda g: g.generate_withdraw_proof(balance, amount, keypair))

    def verify_withdraw_proof(
        self,
        proof: WithdrawProof,
        balance: Ciphertext,
        public_key: bytes,
        amount: int,
    ) -> Tuple[bool, str]:
        return self._run(
            "verify_withdraw_proof",
            lambda g: g.verify_withdraw_proof(proof, balance, public_key, amount),
        )

    # -------------------------------------------------------------------------
    # Telemetry & lifecycle
    # -------------------------------------------------------------------------

    def summarize(self) -> Dict[str, OperationStats]:
        return self.telemetry.summarize()

    def close(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "AccelerationShim":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<AccelerationShim mode={self.mode.value} accelerated={self.accelerated is not None}>"
