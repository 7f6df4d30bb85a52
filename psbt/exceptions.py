"""
Vault Transaction Builder - Exceptions

This module defines the error taxonomy shared by the selection, funding,
PSBT construction and signature extraction code.
"""


class VaultTransactionError(Exception):
    """Base exception for all vault transaction errors."""
    pass


class InputValidationError(VaultTransactionError):
    """Raised for malformed hex, bad key lengths or missing required fields."""
    pass


class PSBTParsingError(InputValidationError):
    """Exception raised during PSBT parsing."""
    pass


class InsufficientFundsError(VaultTransactionError):
    """Exception raised when available UTXOs cannot cover the amount plus fees."""

    def __init__(self, required: int, available: int, message: str = None):
        self.required = required
        self.available = available
        if message is None:
            message = f"Insufficient funds: need {required} sats, have {available} sats"
        super().__init__(message)


class StructuralMismatchError(VaultTransactionError):
    """Raised when a transaction does not have the expected shape or references."""
    pass


class InvalidTemplateError(StructuralMismatchError):
    """Raised when an unfunded transaction template cannot be decoded."""
    pass


class SignatureNotFoundError(VaultTransactionError):
    """Raised when a usable signature cannot be extracted from a signed PSBT."""
    pass


class UnsupportedCapabilityError(VaultTransactionError):
    """Raised when a wallet lacks a capability required by the operation."""
    pass
