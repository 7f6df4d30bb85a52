"""
Taproot Leaf Commitments and Control Blocks

Single-leaf script trees only: the leaf hash is the Merkle root, so the
control block carries no path elements.
"""

from dataclasses import dataclass

from psbt.utils import serialize_varstr

from .exceptions import InvalidKeyError, InvalidScriptError
from .keys import tagged_hash, taproot_tweak_public_key, lift_x


TAPSCRIPT_LEAF_VERSION = 0xc0
CONTROL_BLOCK_SIZE = 33


@dataclass
class TapLeaf:
    """A single tap leaf: script plus leaf version."""
    script: bytes
    leaf_version: int = TAPSCRIPT_LEAF_VERSION

    def __post_init__(self):
        if not self.script:
            raise InvalidScriptError("Tap leaf script cannot be empty")
        if self.leaf_version & 1:
            raise InvalidScriptError(f"Invalid leaf version: {self.leaf_version:#x}")

    @property
    def leaf_hash(self) -> bytes:
        return tap_leaf_hash(self.script, self.leaf_version)


def tap_leaf_hash(script: bytes, leaf_version: int = TAPSCRIPT_LEAF_VERSION) -> bytes:
    """
    Calculate TapLeaf hash for script path spending.

    Args:
        script: Leaf script bytes
        leaf_version: Leaf version (0xc0 for tapscript)

    Returns:
        32-byte TapLeaf hash
    """
    return tagged_hash("TapLeaf", bytes([leaf_version]) + serialize_varstr(script))


def create_tap_script_control_block(internal_key: bytes, script: bytes) -> bytes:
    """
    Build the control block for spending a single-leaf Taproot output.

    The first byte is the leaf version with the output key's y parity in the
    low bit, followed by the x-only internal key.

    Args:
        internal_key: 32-byte x-only internal key
        script: The only leaf script of the tree

    Returns:
        33-byte control block

    Raises:
        InvalidKeyError: If the internal key is not a valid x-only key
    """
    if len(internal_key) != 32:
        raise InvalidKeyError(f"Internal key must be 32 bytes, got {len(internal_key)}")
    if lift_x(internal_key) is None:
        raise InvalidKeyError(f"Internal key is not on the curve: {internal_key.hex()}")

    leaf = TapLeaf(script)
    output_key = taproot_tweak_public_key(internal_key, leaf.leaf_hash)

    return bytes([leaf.leaf_version | output_key.parity]) + internal_key


def taproot_output_key(internal_key: bytes, script: bytes) -> bytes:
    """Return the 32-byte x-only output key committing to a single leaf."""
    return taproot_tweak_public_key(internal_key, tap_leaf_hash(script)).x_only


def taproot_output_script(internal_key: bytes, script: bytes) -> bytes:
    """
    Create the P2TR output script committing to a single leaf.

    Args:
        internal_key: 32-byte x-only internal key
        script: Leaf script

    Returns:
        34-byte P2TR output script
    """
    return b'\x51\x20' + taproot_output_key(internal_key, script)
