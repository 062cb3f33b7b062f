"""
Confidential transfer account state parsing.

A token account blob is the 165-byte base account followed by a list of
extensions, each framed as {type u16 LE, length u16 LE, payload}. Only the
confidential transfer account extension is read here:

    elgamal pubkey        32
    pending balance       64  (commitment 32 | handle 32)
    available balance     64
    flags                  1  (bit0 transfers enabled, bit1 allow credits)
    pending credits       u64
    maximum pending       u64
    expected pending      u64
    actual pending        u64
"""

import struct
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from ctcore.core.errors import AccountDataError
from ctcore.core.types import Ciphertext

BASE_ACCOUNT_SIZE = 165
# Mint and account share the extension area; the account-type byte sits at 165
ACCOUNT_TYPE_SIZE = 1
EXTENSIONS_OFFSET = BASE_ACCOUNT_SIZE + ACCOUNT_TYPE_SIZE
ACCOUNT_TYPE_ACCOUNT = 2

CONFIDENTIAL_TRANSFER_ACCOUNT_EXTENSION = 5
TLV_HEADER = struct.Struct("<HH")
EXTENSION_LAYOUT = struct.Struct("<32s64s64sBQQQQ")

FLAG_TRANSFERS_ENABLED = 0x01
FLAG_ALLOW_CONFIDENTIAL_CREDITS = 0x02


@dataclass(frozen=True)
class ConfidentialAccountState:
    """Decoded confidential transfer extension of a token account."""
    elgamal_public_key: bytes
    pending_balance: Ciphertext
    available_balance: Ciphertext
    transfers_enabled: bool
    allow_confidential_credits: bool
    pending_balance_credit_counter: int
    maximum_pending_balance_credit_counter: int
    expected_pending_balance_credit_counter: int
    actual_pending_balance_credit_counter: int

    @property
    def flags(self) -> int:
        value = 0
        if self.transfers_enabled:
            value |= FLAG_TRANSFERS_ENABLED
        if self.allow_confidential_credits:
            value |= FLAG_ALLOW_CONFIDENTIAL_CREDITS
        return value

    def to_bytes(self) -> bytes:
        return EXTENSION_LAYOUT.pack(
            self.elgamal_public_key,
            self.pending_balance.to_bytes(),
            self.available_balance.to_bytes(),
            self.flags,
            self.pending_balance_credit_counter,
            self.maximum_pending_balance_credit_counter,
            self.expected_pending_balance_credit_counter,
            self.actual_pending_balance_credit_counter,
        )

    @classmethod
    def from_bytes(cls, payload: bytes) -> "ConfidentialAccountState":
        if len(payload) < EXTENSION_LAYOUT.size:
            raise AccountDataError(
                f"Confidential transfer extension needs {EXTENSION_LAYOUT.size} bytes, got {len(payload)}"
            )
        (pubkey, pending, available, flags,
         pending_credits, max_credits, expected, actual) = EXTENSION_LAYOUT.unpack_from(payload)
        return cls(
            elgamal_public_key=pubkey,
            pending_balance=Ciphertext.from_bytes(pending),
            available_balance=Ciphertext.from_bytes(available),
            transfers_enabled=bool(flags & FLAG_TRANSFERS_ENABLED),
            allow_confidential_credits=bool(flags & FLAG_ALLOW_CONFIDENTIAL_CREDITS),
            pending_balance_credit_counter=pending_credits,
            maximum_pending_balance_credit_counter=max_credits,
            expected_pending_balance_credit_counter=expected,
            actual_pending_balance_credit_counter=actual,
        )


def iter_extensions(data: bytes) -> Iterator[Tuple[int, bytes]]:
    """
    Yield (type, payload) for each TLV entry after the base account.

    Raises:
        AccountDataError: Blob shorter than a base account, or a TLV entry
            runs past the end of the data
    """
    if len(data) < BASE_ACCOUNT_SIZE:
        raise AccountDataError(f"Account data is {len(data)} bytes, base account needs {BASE_ACCOUNT_SIZE}")
    offset = EXTENSIONS_OFFSET
    while offset + TLV_HEADER.size <= len(data):
        ext_type, length = TLV_HEADER.unpack_from(data, offset)
        offset += TLV_HEADER.size
        if ext_type == 0 and length == 0:
            # Zero padding after the last entry
            return
        end = offset + length
        if end > len(data):
            raise AccountDataError(
                f"Extension {ext_type} declares {length} bytes, only {len(data) - offset} remain"
            )
        yield ext_type, bytes(data[offset:end])
        offset = end


def parse_confidential_account(data: bytes) -> Optional[ConfidentialAccountState]:
    """
    Extract the confidential transfer state from a token account blob.

    Returns:
        ConfidentialAccountState, or None if the extension is absent

    Raises:
        AccountDataError: Truncated or malformed data
    """
    for ext_type, payload in iter_extensions(data):
        if ext_type == CONFIDENTIAL_TRANSFER_ACCOUNT_EXTENSION:
            return ConfidentialAccountState.from_bytes(payload)
    return None


def encode_account(
    state: Optional[ConfidentialAccountState],
    base: Optional[bytes] = None,
    extra_extensions: Tuple[Tuple[int, bytes], ...] = (),
) -> bytes:
    """
    Build an account blob: base account, account type, then TLV entries.

    Used for fixtures and for round-trips with parse_confidential_account.
    """
    base = bytes(BASE_ACCOUNT_SIZE) if base is None else bytes(base)
    if len(base) != BASE_ACCOUNT_SIZE:
        raise ValueError(f"Base account must be {BASE_ACCOUNT_SIZE} bytes")
    out = bytearray(base)
    out.append(ACCOUNT_TYPE_ACCOUNT)
    entries = list(extra_extensions)
    if state is not None:
        entries.append((CONFIDENTIAL_TRANSFER_ACCOUNT_EXTENSION, state.to_bytes()))
    for ext_type, payload in entries:
        out += TLV_HEADER.pack(ext_type, len(payload))
        out += payload
    return bytes(out)
