"""
Vault Transaction Builder - Cryptographic Operations Module

This module provides the Taproot helpers used by the PSBT builders:
- BIP340 tagged hashes and x-only key lifting
- BIP341 key tweaking
- Tap leaf hashes and single-leaf control blocks

Dependencies:
- coincurve: Fast secp256k1 operations
- hashlib: Cryptographic hash functions
"""

from .exceptions import (
    CryptoError,
    InvalidKeyError,
    InvalidScriptError,
)
from .keys import (
    PublicKey,
    tagged_hash,
    lift_x,
    compute_taproot_tweak,
    taproot_tweak_public_key,
)
from .taproot import (
    TapLeaf,
    TAPSCRIPT_LEAF_VERSION,
    tap_leaf_hash,
    create_tap_script_control_block,
    taproot_output_key,
    taproot_output_script,
)

__all__ = [
    'CryptoError',
    'InvalidKeyError',
    'InvalidScriptError',
    'PublicKey',
    'tagged_hash',
    'lift_x',
    'compute_taproot_tweak',
    'taproot_tweak_public_key',
    'TapLeaf',
    'TAPSCRIPT_LEAF_VERSION',
    'tap_leaf_hash',
    'create_tap_script_control_block',
    'taproot_output_key',
    'taproot_output_script',
]
