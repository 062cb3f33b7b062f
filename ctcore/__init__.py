"""
Confidential Transfer Core (ctcore)

Encrypted token balances with:
- Twisted ElGamal encryption over Edwards25519
- Zero-knowledge range, equality and validity proofs
- A proof-context lifecycle coordinator with compute-budget batching
- An acceleration shim choosing between pure-Python and libsodium backends
"""

__version__ = "0.1.0"
