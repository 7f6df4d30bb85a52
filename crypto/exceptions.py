"""
Cryptographic Exceptions

This module defines custom exceptions for key and Taproot operations.
"""


class CryptoError(Exception):
    """Base exception for all cryptographic errors."""
    pass


class InvalidKeyError(CryptoError):
    """Raised when a key is invalid or malformed."""
    pass


class InvalidScriptError(CryptoError):
    """Raised when a tap leaf script cannot be committed to."""
    pass
