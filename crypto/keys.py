"""
Key Handling for Taproot Script-Path Spends

This module wraps coincurve for the x-only key operations needed to derive
Taproot output keys from an internal key and a script commitment.

References:
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
"""

import hashlib
from typing import Optional, Union

from coincurve import PrivateKey as CoinCurvePrivateKey, PublicKey as CoinCurvePublicKey

from .exceptions import InvalidKeyError


# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def tagged_hash(tag: str, data: bytes) -> bytes:
    """
    Compute BIP340/341 tagged hash: SHA256(SHA256(tag) + SHA256(tag) + data).

    Args:
        tag: Tag string for the hash
        data: Data to hash

    Returns:
        32-byte tagged hash
    """
    tag_hash = hashlib.sha256(tag.encode('utf-8')).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def lift_x(x: bytes) -> Optional[bytes]:
    """
    Lift an x-coordinate to the point with even y.

    Args:
        x: 32-byte x-coordinate

    Returns:
        33-byte compressed public key with even y, or None if x is not on the curve
    """
    if len(x) != 32:
        return None

    candidate = b'\x02' + x
    try:
        CoinCurvePublicKey(candidate)
    except ValueError:
        return None
    return candidate


def has_even_y(pubkey: bytes) -> bool:
    """
    Check if a compressed public key has an even y-coordinate.

    Args:
        pubkey: 33-byte compressed public key

    Returns:
        True if y-coordinate is even
    """
    return len(pubkey) == 33 and pubkey[0] == 0x02


class PublicKey:
    """
    Wrapper for public key operations.
    """

    def __init__(self, key_data: Union[bytes, CoinCurvePublicKey]):
        """
        Initialize public key.

        Args:
            key_data: Public key bytes (32 x-only, 33 or 65 bytes) or CoinCurvePublicKey
        """
        if isinstance(key_data, CoinCurvePublicKey):
            self._key = key_data
            return

        if not isinstance(key_data, bytes):
            raise InvalidKeyError("Public key data must be bytes")

        if len(key_data) == 32:
            lifted = lift_x(key_data)
            if lifted is None:
                raise InvalidKeyError(f"x-only key is not on the curve: {key_data.hex()}")
            key_data = lifted
        elif len(key_data) not in [33, 65]:
            raise InvalidKeyError(f"Public key must be 32, 33 or 65 bytes, got {len(key_data)}")

        try:
            self._key = CoinCurvePublicKey(key_data)
        except ValueError as e:
            raise InvalidKeyError(f"Failed to create public key: {e}")

    @property
    def bytes(self) -> bytes:
        """Get compressed public key as bytes."""
        return self._key.format(compressed=True)

    @property
    def hex(self) -> str:
        """Get compressed public key as hex string."""
        return self.bytes.hex()

    @property
    def x_only(self) -> bytes:
        """Get x-only public key for Taproot (32 bytes)."""
        return self.bytes[1:]

    @property
    def parity(self) -> int:
        """0 for even y, 1 for odd y."""
        return 0 if has_even_y(self.bytes) else 1

    def tweak_add(self, tweak: bytes) -> 'PublicKey':
        """
        Add tweak * G to the public key.

        Args:
            tweak: 32-byte tweak value

        Returns:
            Tweaked public key
        """
        if len(tweak) != 32:
            raise InvalidKeyError("Tweak must be 32 bytes")
        if int.from_bytes(tweak, 'big') >= CURVE_ORDER:
            raise InvalidKeyError("Tweak exceeds curve order")

        try:
            tweak_point = CoinCurvePrivateKey(tweak).public_key
            tweaked_point = CoinCurvePublicKey.combine_keys([self._key, tweak_point])
        except ValueError as e:
            raise InvalidKeyError(f"Failed to tweak public key: {e}")

        return PublicKey(tweaked_point)


def compute_taproot_tweak(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> bytes:
    """
    Compute Taproot tweak according to BIP341.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: Optional 32-byte Merkle root of script tree

    Returns:
        32-byte tweak value
    """
    if len(internal_pubkey_x) != 32:
        raise InvalidKeyError("Internal pubkey x-coordinate must be 32 bytes")

    tweak_data = internal_pubkey_x
    if merkle_root is not None:
        if len(merkle_root) != 32:
            raise InvalidKeyError("Merkle root must be 32 bytes")
        tweak_data += merkle_root

    return tagged_hash("TapTweak", tweak_data)


def taproot_tweak_public_key(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> PublicKey:
    """
    Derive the Taproot output key Q = lift_x(P) + t * G.

    Args:
        internal_pubkey_x: 32-byte x-only internal key
        merkle_root: Merkle root of the script tree, None for key-path only

    Returns:
        Output key as a full PublicKey (its parity is needed for control blocks)
    """
    tweak = compute_taproot_tweak(internal_pubkey_x, merkle_root)
    return PublicKey(internal_pubkey_x).tweak_add(tweak)
