"""
Vault Transaction Builder - PSBT Module

This module provides the wire-level pieces for vault transactions:
transaction serialization, BIP-174 PSBT construction and parsing, template
decoding and signature extraction.

Funding, split and payout construction depend on the UTXO models or on the
crypto package (which itself uses psbt.utils) and are imported from
psbt.funding, psbt.split and psbt.payout directly.
"""

from .exceptions import (
    VaultTransactionError,
    InputValidationError,
    PSBTParsingError,
    InsufficientFundsError,
    StructuralMismatchError,
    InvalidTemplateError,
    SignatureNotFoundError,
    UnsupportedCapabilityError,
)
from .transaction import Transaction, TxIn, TxOut
from .builder import BasePSBTBuilder, PSBTInput, PSBTOutput, TapLeafScript
from .parser import PSBTParser, ParsedPSBT, parse_psbt
from .template import UnfundedTemplate, parse_unfunded_template
from .address import get_network, address_to_script_pubkey
from .signature import extract_payout_signature, normalize_schnorr_signature

__all__ = [
    'VaultTransactionError',
    'InputValidationError',
    'PSBTParsingError',
    'InsufficientFundsError',
    'StructuralMismatchError',
    'InvalidTemplateError',
    'SignatureNotFoundError',
    'UnsupportedCapabilityError',
    'Transaction',
    'TxIn',
    'TxOut',
    'BasePSBTBuilder',
    'PSBTInput',
    'PSBTOutput',
    'TapLeafScript',
    'PSBTParser',
    'ParsedPSBT',
    'parse_psbt',
    'UnfundedTemplate',
    'parse_unfunded_template',
    'get_network',
    'address_to_script_pubkey',
    'extract_payout_signature',
    'normalize_schnorr_signature',
]

__version__ = '1.0.0'
