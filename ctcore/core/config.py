"""
Runtime configuration for ctcore.

Defines decryption bounds, compute budgets, submission timeouts and the
acceleration policy. Values come from defaults, a .env file and CTCORE_*
environment variables, in increasing order of precedence, then explicit
keyword overrides.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "CTCORE_"

# Compute-unit defaults; mirror ctcore.chain.instructions.PROOF_COMPUTE_UNITS
# plus context creation overhead.
DEFAULT_TRANSFER_COMPUTE_UNITS = 305_000
DEFAULT_WITHDRAW_COMPUTE_UNITS = 165_000


class AccelerationMode(str, Enum):
    """How the shim picks an implementation per call."""
    FORCE_REFERENCE = "force_reference"
    FORCE_ACCELERATED = "force_accelerated"
    AUTO = "auto"


class ContextAddressing(str, Enum):
    """How ephemeral proof-context addresses are produced."""
    DERIVED = "derived"   # sha256(domain | sender | session salt | monotonic nonce)
    RANDOM = "random"     # 32 CSPRNG bytes


class CoreConfig(BaseModel):
    """Library-wide configuration parameters"""

    model_config = ConfigDict(frozen=True)

    # Encryption parameters
    decrypt_bound_bits: int = Field(32, ge=16, le=48)  # BSGS searches [0, 2^bits)

    # Coordinator parameters
    max_compute_units: int = Field(1_400_000, gt=0)  # Ceiling per submitted operation set
    transfer_compute_units: int = Field(DEFAULT_TRANSFER_COMPUTE_UNITS, gt=0)
    withdraw_compute_units: int = Field(DEFAULT_WITHDRAW_COMPUTE_UNITS, gt=0)
    submission_timeout_s: float = Field(30.0, gt=0)
    auto_cleanup: bool = True  # Close contexts in the same submission
    verify_before_submit: bool = True  # Local advisory verification
    context_addressing: ContextAddressing = ContextAddressing.DERIVED

    # Acceleration parameters
    acceleration_mode: AccelerationMode = AccelerationMode.AUTO
    preferred_batch_size: int = Field(10, ge=1)
    accelerated_timeout_s: Optional[float] = Field(5.0, gt=0)  # None runs inline
    telemetry_window: int = Field(1000, ge=1)

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value

    @property
    def batch_threshold(self) -> int:
        """Smallest batch that goes through an accelerated batch call."""
        return max(1, -(-self.preferred_batch_size // 2))


def _env_values(env_file: Optional[str]) -> dict:
    path = env_file if env_file is not None else find_dotenv(usecwd=True)
    values = {}
    if path:
        values.update({k: v for k, v in dotenv_values(path).items() if v is not None})
    values.update(os.environ)
    return values


def load_config(env_file: Optional[str] = None, **overrides) -> CoreConfig:
    """
    Load configuration from .env / environment, with explicit overrides.

    Args:
        env_file: Path to a .env file. If None, the nearest .env from the
            working directory is used when present.
        **overrides: Field values taking precedence over the environment

    Returns:
        CoreConfig instance

    Raises:
        pydantic.ValidationError: A value is out of range or unparsable
    """
    env = _env_values(env_file)
    values = {}
    for name in CoreConfig.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in env and env[key] != "":
            raw = env[key]
            values[name] = None if raw.lower() == "none" else raw
    values.update(overrides)
    return CoreConfig(**values)
