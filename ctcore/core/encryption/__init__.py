"""Twisted ElGamal encryption engine"""
from ctcore.core.encryption.engine import (
    EncryptionEngine,
    discrete_log,
)

__all__ = [
    "EncryptionEngine",
    "discrete_log",
]
