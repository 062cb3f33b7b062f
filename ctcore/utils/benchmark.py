"""
Benchmarks for ctcore, per curve backend.

Run with: python -m ctcore.utils.benchmark
"""

import statistics
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ctcore.crypto import BackendKind, CurveBackend, get_backend, probe_acceleration, random_scalar
from ctcore.core.encryption import EncryptionEngine
from ctcore.core.proofs import ProofGenerator
from ctcore.utils.logger import get_logger

logger = get_logger("benchmark")


# =============================================================================
# Benchmark Framework
# =============================================================================


@dataclass
class BenchmarkResult:
    """Result of a benchmark run."""
    name: str
    iterations: int
    total_time_ms: float
    avg_time_ms: float
    min_time_ms: float
    max_time_ms: float
    ops_per_sec: float

    def __str__(self) -> str:
        return (
            f"{self.name}: {self.ops_per_sec:.1f} ops/s "
            f"(avg={self.avg_time_ms:.3f}ms, min={self.min_time_ms:.3f}ms, max={self.max_time_ms:.3f}ms)"
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "iterations": self.iterations,
            "avg_time_ms": self.avg_time_ms,
            "min_time_ms": self.min_time_ms,
            "max_time_ms": self.max_time_ms,
            "ops_per_sec": self.ops_per_sec,
        }


def benchmark(
    name: str,
    func: Callable,
    iterations: int = 10,
    warmup: int = 1,
) -> BenchmarkResult:
    """
    Run a benchmark.

    Args:
        name: Benchmark name
        func: Function to benchmark (no args)
        iterations: Number of timed iterations
        warmup: Untimed iterations first

    Returns:
        BenchmarkResult
    """
    for _ in range(warmup):
        func()

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        func()
        times.append((time.perf_counter() - start) * 1000)

    avg = statistics.mean(times)
    return BenchmarkResult(
        name=name,
        iterations=iterations,
        total_time_ms=sum(times),
        avg_time_ms=avg,
        min_time_ms=min(times),
        max_time_ms=max(times),
        ops_per_sec=1000 / avg if avg > 0 else float("inf"),
    )


# =============================================================================
# Suites
# =============================================================================


def benchmark_encryption(backend: CurveBackend, iterations: int = 20) -> List[BenchmarkResult]:
    """Encrypt, decrypt and homomorphic subtraction."""
    engine = EncryptionEngine(backend)
    kp = engine.generate_keypair(seed=b"benchmark")
    ct = engine.encrypt(123_456, kp.public_key)
    label = backend.name

    return [
        benchmark(f"[{label}] Encrypt", lambda: engine.encrypt(123_456, kp.public_key), iterations),
        benchmark(f"[{label}] Encrypt batch (10)", lambda: engine.encrypt_batch(range(10), kp.public_key),
                  max(1, iterations // 5)),
        benchmark(f"[{label}] Subtract", lambda: engine.subtract(ct, ct), iterations),
        benchmark(f"[{label}] Decrypt (< 2^20)", lambda: engine.decrypt(ct, kp.secret_key),
                  max(1, iterations // 5)),
    ]


def benchmark_proofs(backend: CurveBackend, iterations: int = 3) -> List[BenchmarkResult]:
    """Range proof and transfer proof generation/verification."""
    engine = EncryptionEngine(backend)
    prover = ProofGenerator(engine)
    sender = engine.generate_keypair(seed=b"benchmark-sender")
    receiver = engine.generate_keypair(seed=b"benchmark-receiver")
    balance = engine.encrypt(1_000, sender.public_key)

    blinding = random_scalar()
    commitment = backend.commit(42, blinding)
    range_proof = prover.generate_range_proof(42, commitment, blinding)
    transfer = prover.generate_transfer_proof(balance, 10, sender, receiver.public_key)
    label = backend.name

    return [
        benchmark(f"[{label}] Range proof", lambda: prover.generate_range_proof(42, commitment, blinding),
                  iterations, warmup=0),
        benchmark(f"[{label}] Range verify", lambda: prover.verify_range_proof(range_proof),
                  iterations, warmup=0),
        benchmark(
            f"[{label}] Transfer proof",
            lambda: prover.generate_transfer_proof(balance, 10, sender, receiver.public_key),
            iterations,
            warmup=0,
        ),
        benchmark(
            f"[{label}] Transfer verify",
            lambda: prover.verify_transfer_proof(
                transfer.transfer_proof, balance, sender.public_key, receiver.public_key
            ),
            iterations,
            warmup=0,
        ),
    ]


def available_backends() -> List[CurveBackend]:
    backends = [get_backend(BackendKind.REFERENCE)]
    if probe_acceleration().available:
        backends.append(get_backend(BackendKind.SODIUM))
    return backends


# =============================================================================
# Main
# =============================================================================


def run_all_benchmarks(backend: Optional[str] = None, iterations: int = 3) -> List[BenchmarkResult]:
    """Run all suites and print results."""
    if backend is None:
        backends = available_backends()
    else:
        backends = [get_backend(BackendKind(backend))]

    print("=" * 60)
    print("ctcore Performance Benchmarks")
    print("=" * 60)

    results = []
    for b in backends:
        for section_name, bench_func in (("Encryption", benchmark_encryption), ("Proofs", benchmark_proofs)):
            print(f"\n{section_name} ({b.name})")
            print("-" * 40)
            section = bench_func(b, iterations)
            for r in section:
                print(f"  {r}")
            results.extend(section)

    print("\n" + "=" * 60)
    return results


if __name__ == "__main__":
    run_all_benchmarks()
