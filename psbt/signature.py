"""
Vault Transaction Builder - Signature Extraction

Reads the depositor's Schnorr signature back out of a PSBT signed by the
wallet and normalizes it to 64 bytes.
"""

import logging

from .exceptions import InputValidationError, PSBTParsingError, SignatureNotFoundError
from .parser import parse_psbt


logger = logging.getLogger(__name__)


SCHNORR_SIGNATURE_SIZE = 64
# SIGHASH_DEFAULT and SIGHASH_ALL
ALLOWED_SIGHASH_FLAGS = (0x00, 0x01)


def normalize_schnorr_signature(signature: bytes) -> bytes:
    """
    Strip an optional sighash flag from a Schnorr signature.

    Args:
        signature: 64-byte signature, or 65 bytes ending in 0x00 or 0x01

    Returns:
        64-byte signature

    Raises:
        SignatureNotFoundError: For any other length or flag
    """
    if len(signature) == SCHNORR_SIGNATURE_SIZE:
        return signature

    if len(signature) == SCHNORR_SIGNATURE_SIZE + 1:
        sighash_flag = signature[-1]
        if sighash_flag not in ALLOWED_SIGHASH_FLAGS:
            raise SignatureNotFoundError(f"Malformed signature: unexpected sighash flag 0x{sighash_flag:02x}")
        return signature[:SCHNORR_SIGNATURE_SIZE]

    raise SignatureNotFoundError(f"Malformed signature: unexpected length {len(signature)}")


def extract_payout_signature(signed_psbt_hex: str, depositor_pubkey: str) -> str:
    """
    Extract the depositor's signature for input 0 of a signed payout PSBT.

    Non-finalized PSBTs are searched for a tap script signature made by the
    depositor key. Finalized PSBTs fall back to the first witness element,
    relying on the convention that the depositor signature comes first;
    this is not verified cryptographically.

    Args:
        signed_psbt_hex: Signed PSBT (hex or base64)
        depositor_pubkey: Depositor x-only public key (64 hex chars)

    Returns:
        64-byte signature as 128 hex characters

    Raises:
        InputValidationError: If the PSBT or key cannot be decoded
        SignatureNotFoundError: If no usable signature is present
    """
    try:
        depositor_key = bytes.fromhex(depositor_pubkey)
    except (ValueError, TypeError):
        raise InputValidationError(f"Invalid depositor public key hex: {depositor_pubkey}")
    if len(depositor_key) != 32:
        raise InputValidationError(
            f"Depositor public key must be 32 bytes (x-only), got {len(depositor_key)}"
        )

    try:
        parsed = parse_psbt(signed_psbt_hex)
    except PSBTParsingError as e:
        raise InputValidationError(f"Failed to parse signed PSBT: {e}")

    if not parsed.inputs:
        raise SignatureNotFoundError("No inputs found in signed PSBT")

    first_input = parsed.inputs[0]

    if first_input.tap_script_sigs:
        for (pubkey, _leaf_hash), signature in first_input.tap_script_sigs.items():
            if pubkey == depositor_key:
                return normalize_schnorr_signature(signature).hex()
        raise SignatureNotFoundError(f"No signature found for depositor pubkey: {depositor_pubkey}")

    if first_input.final_scriptwitness:
        logger.warning("No tapScriptSig in signed PSBT, taking the first finalized witness "
                       "element as the depositor signature")
        return normalize_schnorr_signature(first_input.final_scriptwitness[0]).hex()

    raise SignatureNotFoundError("No tapScriptSig found in signed PSBT")
