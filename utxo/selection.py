"""
Vault Transaction Builder - UTXO Selection

Greedy largest-first input selection with the fee recomputed after every
added input. Sizes are the conservative Taproot estimates used by the
Babylon staking tooling.
"""

import logging
import math
from typing import List, Sequence

from psbt.exceptions import InputValidationError, InsufficientFundsError
from psbt.utils import is_valid_script

from .models import UTXO, UTXOSelectionResult


logger = logging.getLogger(__name__)


# Virtual size estimates (vbytes)
P2TR_INPUT_SIZE = 58
MAX_NON_LEGACY_OUTPUT_SIZE = 43
TX_BUFFER_SIZE_OVERHEAD = 11

# Outputs at or below this value are not worth creating
BTC_DUST_SAT = 546
DUST_THRESHOLD = BTC_DUST_SAT

# Fee estimates are less accurate at the wallet relay floor, pad them
WALLET_RELAY_FEE_RATE_THRESHOLD = 2
LOW_RATE_ESTIMATION_ACCURACY_BUFFER = 30


def rate_based_tx_buffer_fee(fee_rate: float) -> int:
    """Flat padding added to fee estimates at very low fee rates."""
    if fee_rate <= WALLET_RELAY_FEE_RATE_THRESHOLD:
        return LOW_RATE_ESTIMATION_ACCURACY_BUFFER
    return 0


def estimate_pegin_fee(input_count: int, fee_rate: float) -> int:
    """
    Estimate the fee of a peg-in transaction without a change output.

    Args:
        input_count: Number of Taproot inputs
        fee_rate: Fee rate in sat/vbyte

    Returns:
        Fee in satoshis
    """
    tx_size = input_count * P2TR_INPUT_SIZE + MAX_NON_LEGACY_OUTPUT_SIZE + TX_BUFFER_SIZE_OVERHEAD
    return math.ceil(tx_size * fee_rate) + rate_based_tx_buffer_fee(fee_rate)


def select_utxos_for_pegin(
    available_utxos: Sequence[UTXO],
    pegin_amount: int,
    fee_rate: float
) -> UTXOSelectionResult:
    """
    Select UTXOs to fund a peg-in of the given amount.

    UTXOs whose script does not decode are skipped. The rest are taken
    largest first (ties keep their input order) until the accumulated
    value covers the amount plus the fee for the current input count. When
    the leftover would exceed the dust threshold, the fee also pays for a
    change output.

    Args:
        available_utxos: Candidate UTXOs
        pegin_amount: Amount to lock in the vault, in satoshis
        fee_rate: Fee rate in sat/vbyte

    Returns:
        UTXOSelectionResult with selected UTXOs, total, fee and change

    Raises:
        InputValidationError: If the amount or fee rate is not positive
        InsufficientFundsError: If the UTXOs cannot cover amount plus fee
    """
    if pegin_amount <= 0:
        raise InputValidationError(f"Peg-in amount must be positive, got {pegin_amount}")
    if fee_rate <= 0:
        raise InputValidationError(f"Fee rate must be positive, got {fee_rate}")

    if not available_utxos:
        raise InsufficientFundsError(
            pegin_amount, 0, "Insufficient funds: no UTXOs available"
        )

    valid_utxos = [utxo for utxo in available_utxos if is_valid_script(utxo.script_pubkey)]
    if not valid_utxos:
        raise InsufficientFundsError(
            pegin_amount, 0,
            "Insufficient funds: no valid UTXOs available (all have invalid scripts)"
        )
    if len(valid_utxos) < len(available_utxos):
        logger.debug(f"Skipped {len(available_utxos) - len(valid_utxos)} UTXOs with invalid scripts")

    # sorted() is stable, equal values keep their input order
    sorted_utxos = sorted(valid_utxos, key=lambda utxo: utxo.value, reverse=True)

    selected: List[UTXO] = []
    accumulated = 0
    fee = 0

    for utxo in sorted_utxos:
        selected.append(utxo)
        accumulated += utxo.value

        fee = estimate_pegin_fee(len(selected), fee_rate)
        if accumulated - pegin_amount - fee > DUST_THRESHOLD:
            fee += math.ceil(MAX_NON_LEGACY_OUTPUT_SIZE * fee_rate)

        if accumulated >= pegin_amount + fee:
            change_amount = accumulated - pegin_amount - fee
            logger.debug(f"Selected {len(selected)} UTXOs: total={accumulated}, "
                         f"fee={fee}, change={change_amount}")
            return UTXOSelectionResult(
                selected_utxos=selected,
                total_value=accumulated,
                fee=fee,
                change_amount=change_amount,
            )

    required = pegin_amount + fee
    raise InsufficientFundsError(
        required,
        accumulated,
        f"Insufficient funds: need {required} sats ({pegin_amount} pegin + {fee} fee), "
        f"have {accumulated} sats"
    )


def should_add_change_output(change_amount: int) -> bool:
    """Return True when the change is worth its own output."""
    return change_amount > DUST_THRESHOLD


def get_dust_threshold() -> int:
    return BTC_DUST_SAT
