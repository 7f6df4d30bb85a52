"""
Vault Transaction Builder - Peg-in Transaction Funding

Turns an unfunded peg-in template into a transaction ready for wallet
signing by adding the selected UTXOs as inputs and, when worthwhile, a
change output.
"""

import logging
import struct
from typing import Sequence

from utxo.models import UTXO
from utxo.selection import should_add_change_output

from .address import address_to_script_pubkey
from .exceptions import InputValidationError
from .template import parse_unfunded_template
from .transaction import Transaction, SEQUENCE_FINAL
from .utils import serialize_outpoint


logger = logging.getLogger(__name__)


def fund_pegin_transaction(
    unfunded_tx_hex: str,
    selected_utxos: Sequence[UTXO],
    change_address: str,
    change_amount: int,
    network: str
) -> str:
    """
    Fund an unfunded peg-in template.

    The template's version, locktime and outputs are preserved. One input is
    added per selected UTXO and a change output is appended only when the
    change exceeds the dust threshold.

    Args:
        unfunded_tx_hex: Template hex from the script engine (0 inputs)
        selected_utxos: UTXOs chosen by select_utxos_for_pegin
        change_address: Address receiving the change
        change_amount: Change in satoshis
        network: Network the change address belongs to

    Returns:
        Funded, unsigned transaction hex
    """
    if not selected_utxos:
        raise InputValidationError("No UTXOs provided to fund the peg-in transaction")

    template = parse_unfunded_template(unfunded_tx_hex)

    tx = Transaction(version=template.version, locktime=template.locktime)

    for utxo in selected_utxos:
        try:
            serialize_outpoint(utxo.txid, utxo.vout)
        except (ValueError, struct.error) as e:
            raise InputValidationError(f"Invalid UTXO outpoint {utxo.txid}:{utxo.vout}: {e}")
        tx.add_input(utxo.txid, utxo.vout, sequence=SEQUENCE_FINAL)

    for template_output in template.outputs:
        tx.add_output(template_output.script, template_output.value)

    if should_add_change_output(change_amount):
        change_script = address_to_script_pubkey(change_address, network)
        tx.add_output(change_script, change_amount)
    else:
        logger.debug(f"Change of {change_amount} sats is dust, leaving it to fees")

    logger.info(f"Funded peg-in transaction {tx.txid} with {len(tx.inputs)} inputs "
                f"and {len(tx.outputs)} outputs")

    return tx.to_hex()
