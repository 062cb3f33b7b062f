"""
Error taxonomy for confidential transfers.

Decryption failure is deliberately absent: probing a ciphertext with the
wrong key is an expected outcome and comes back as the
DECRYPTION_AMBIGUOUS value (see ctcore.core.types), not as an exception.
"""

from typing import Any, Optional


class ConfidentialTransferError(Exception):
    """Base error for ctcore."""
    pass


class AmountOutOfRange(ConfidentialTransferError, ValueError):
    """Amount is not an integer in [0, 2^64)."""
    pass


class InsufficientBalance(ConfidentialTransferError):
    """Requested amount exceeds the decrypted balance (or the balance could not be decrypted)."""

    def __init__(self, requested: int, available: Optional[int]):
        self.requested = requested
        self.available = available
        if available is None:
            detail = "balance could not be decrypted"
        else:
            detail = f"available {available}"
        super().__init__(f"Insufficient balance: requested {requested}, {detail}")


class InvalidProof(ConfidentialTransferError):
    """Local or remote verification rejected a proof. Never retried automatically."""
    pass


class ResourceBudgetExceeded(ConfidentialTransferError):
    """A single item does not fit under the compute ceiling."""

    def __init__(self, item_cost: int, ceiling: int):
        self.item_cost = item_cost
        self.ceiling = ceiling
        super().__init__(
            f"Operation needs {item_cost} compute units, ceiling is {ceiling}; "
            "raise the ceiling or reduce the item count"
        )


class AccelerationFailure(ConfidentialTransferError):
    """Accelerated path failed or timed out. Internal to the shim."""
    pass


class InvalidStateTransition(ConfidentialTransferError):
    """Proof-context lifecycle transition not allowed."""
    pass


class SubmissionError(ConfidentialTransferError):
    """
    Submission sink rejected or failed to accept an operation set.

    Carries the partial result so callers can reconcile contexts that were
    left open.
    """

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class SubmissionTimeout(SubmissionError):
    """Submission did not complete within the configured timeout."""
    pass


class AccountDataError(ConfidentialTransferError, ValueError):
    """Account blob is truncated or malformed."""
    pass


class PartialBatchError(SubmissionError):
    """
    A later sub-batch could not be prepared after earlier ones were accepted.

    `result` holds the accepted sub-batches and every context touched;
    `cause` is the preparation error.
    """

    def __init__(self, message: str, result: Any, cause: BaseException):
        super().__init__(message, result)
        self.cause = cause
