"""
Vault Transaction Builder - UTXO Selection Module

This module provides the UTXO value objects and the largest-first selection
algorithm used to fund peg-in transactions.
"""

from .models import UTXO, UTXOSelectionResult
from .selection import (
    select_utxos_for_pegin,
    should_add_change_output,
    get_dust_threshold,
    DUST_THRESHOLD,
)

__all__ = [
    'UTXO',
    'UTXOSelectionResult',
    'select_utxos_for_pegin',
    'should_add_change_output',
    'get_dust_threshold',
    'DUST_THRESHOLD',
]
