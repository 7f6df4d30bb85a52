"""
Vault Transaction Builder - Public Key Utilities

Hex handling and x-only normalization for keys coming from wallets, which
may report x-only (32 bytes), compressed (33) or uncompressed (65) keys.
"""

import re
from dataclasses import dataclass
from typing import Optional

from psbt.exceptions import InputValidationError


_HEX_RE = re.compile(r'^[0-9a-fA-F]*$')

X_ONLY_HEX_LENGTH = 64
COMPRESSED_HEX_LENGTH = 66
UNCOMPRESSED_HEX_LENGTH = 130


def strip_hex_prefix(value: str) -> str:
    """Remove a leading '0x' if present."""
    return value[2:] if value.startswith('0x') else value


def _is_valid_hex_raw(value: str) -> bool:
    return bool(_HEX_RE.match(value)) and len(value) % 2 == 0


def is_valid_hex(value: str) -> bool:
    """True for an even-length hex string, with or without '0x'."""
    return _is_valid_hex_raw(strip_hex_prefix(value))


def hex_to_bytes(value: str) -> bytes:
    """
    Decode hex (optionally '0x' prefixed) to bytes.

    Raises:
        InputValidationError: For non-hex characters or odd length
    """
    clean = strip_hex_prefix(value)
    if not _is_valid_hex_raw(clean):
        raise InputValidationError(f"Invalid hex string: {value}")
    return bytes.fromhex(clean)


def bytes_to_hex(data: bytes) -> str:
    return data.hex()


def to_x_only(pubkey: bytes) -> bytes:
    """Drop the prefix byte of a full public key; x-only keys pass through."""
    return pubkey if len(pubkey) == 32 else pubkey[1:33]


def process_public_key_to_x_only(public_key_hex: str) -> str:
    """
    Normalize a public key to x-only hex.

    Args:
        public_key_hex: 64, 66 or 130 hex characters, optionally '0x' prefixed

    Returns:
        64-character x-only public key hex

    Raises:
        InputValidationError: For invalid characters or an unexpected length
    """
    clean = strip_hex_prefix(public_key_hex)

    if not _is_valid_hex_raw(clean):
        raise InputValidationError(f"Invalid hex characters in public key: {public_key_hex}")

    if len(clean) == X_ONLY_HEX_LENGTH:
        return clean

    if len(clean) not in (COMPRESSED_HEX_LENGTH, UNCOMPRESSED_HEX_LENGTH):
        raise InputValidationError(
            f"Invalid public key length: {len(clean)} (expected 64, 66, or 130 hex chars)"
        )

    return to_x_only(bytes.fromhex(clean)).hex()


@dataclass
class WalletPubkeyValidation:
    wallet_pubkey_raw: str
    wallet_pubkey_x_only: str
    depositor_pubkey: str


def validate_wallet_pubkey(
    wallet_pubkey_raw: str,
    expected_depositor_pubkey: Optional[str] = None
) -> WalletPubkeyValidation:
    """
    Check that the connected wallet holds the vault depositor key.

    Args:
        wallet_pubkey_raw: Key as reported by the wallet
        expected_depositor_pubkey: Depositor x-only key of the vault; when
            omitted the wallet key is taken as the depositor

    Returns:
        WalletPubkeyValidation with raw, x-only and depositor keys

    Raises:
        InputValidationError: If the keys differ or cannot be decoded
    """
    wallet_x_only = process_public_key_to_x_only(wallet_pubkey_raw)
    depositor = expected_depositor_pubkey or wallet_x_only

    if wallet_x_only.lower() != depositor.lower():
        raise InputValidationError(
            f"Wallet public key does not match vault depositor. "
            f"Expected: {depositor}, Got: {wallet_x_only}"
        )

    return WalletPubkeyValidation(
        wallet_pubkey_raw=wallet_pubkey_raw,
        wallet_pubkey_x_only=wallet_x_only,
        depositor_pubkey=depositor,
    )
