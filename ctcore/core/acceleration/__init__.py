"""Reference/accelerated path selection with fallback and telemetry"""
from ctcore.core.acceleration.shim import (
    ACCELERATED_OPERATIONS,
    AccelerationShim,
    ExecutionPath,
)
from ctcore.core.acceleration.telemetry import (
    OperationStats,
    TelemetryBuffer,
    TelemetryRecord,
)
from ctcore.core.config import AccelerationMode

__all__ = [
    "ACCELERATED_OPERATIONS",
    "AccelerationMode",
    "AccelerationShim",
    "ExecutionPath",
    "OperationStats",
    "TelemetryBuffer",
    "TelemetryRecord",
]
