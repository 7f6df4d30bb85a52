"""
Vault Transaction Builder - Split Transactions

A split transaction turns a set of UTXOs into several outputs so that more
than one vault can be funded independently. The transaction id is known
before signing, so the new outputs can be referenced right away.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from utxo.models import UTXO

from .address import address_to_script_pubkey
from .builder import BasePSBTBuilder
from .exceptions import InputValidationError, StructuralMismatchError
from .transaction import Transaction, TxOut
from .utils import is_p2tr_script


logger = logging.getLogger(__name__)


SPLIT_TX_VERSION = 2


@dataclass
class SplitOutputSpec:
    """Requested output of a split transaction."""
    amount: int
    address: str


@dataclass
class SplitOutput:
    """Output created by a split transaction, usable as a future UTXO."""
    txid: str
    vout: int
    value: int
    script_pubkey: str
    address: str = ''

    def to_utxo(self) -> UTXO:
        return UTXO(txid=self.txid, vout=self.vout, value=self.value,
                    script_pubkey=self.script_pubkey)


@dataclass
class SplitTransaction:
    tx_hex: str
    txid: str
    outputs: List[SplitOutput] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tx_hex': self.tx_hex,
            'txid': self.txid,
            'outputs': [
                {
                    'txid': output.txid,
                    'vout': output.vout,
                    'value': output.value,
                    'script_pubkey': output.script_pubkey,
                    'address': output.address,
                }
                for output in self.outputs
            ],
        }


def create_split_transaction(
    inputs: Sequence[UTXO],
    outputs: Sequence[SplitOutputSpec],
    network: str
) -> SplitTransaction:
    """
    Create an unsigned split transaction.

    Args:
        inputs: UTXOs to spend
        outputs: Amounts and destination addresses, in output order
        network: Network the destination addresses belong to

    Returns:
        SplitTransaction with hex, txid and the created outputs

    Raises:
        InputValidationError: On empty inputs/outputs, non-positive amounts
            or undecodable addresses
    """
    if not inputs:
        raise InputValidationError("No input UTXOs provided for split transaction")
    if not outputs:
        raise InputValidationError("No outputs specified for split transaction")

    tx = Transaction(version=SPLIT_TX_VERSION, locktime=0)

    for utxo in inputs:
        tx.add_input(utxo.txid, utxo.vout)

    scripts = []
    for index, output in enumerate(outputs):
        if output.amount <= 0:
            raise InputValidationError(
                f"Invalid output amount for output {index}: {output.amount} satoshis "
                f"(must be greater than zero)"
            )
        script = address_to_script_pubkey(output.address, network)
        tx.add_output(script, output.amount)
        scripts.append(script)

    try:
        tx_hex = tx.to_hex()
    except (ValueError, struct.error) as e:
        raise InputValidationError(f"Invalid split transaction input: {e}")
    txid = tx.txid

    split_outputs = [
        SplitOutput(
            txid=txid,
            vout=index,
            value=output.amount,
            script_pubkey=script.hex(),
            address=output.address,
        )
        for index, (output, script) in enumerate(zip(outputs, scripts))
    ]

    logger.info(f"Created split transaction {txid}: {len(inputs)} inputs, "
                f"{len(split_outputs)} outputs")

    return SplitTransaction(tx_hex=tx_hex, txid=txid, outputs=split_outputs)


def create_split_transaction_psbt(
    unsigned_tx_hex: str,
    inputs: Sequence[UTXO],
    public_key_no_coord: bytes
) -> str:
    """
    Build the signing PSBT for a split transaction.

    Every input is treated as a Taproot key-path spend by the same key, so
    each gets witness_utxo and tap_internal_key.

    Args:
        unsigned_tx_hex: Transaction from create_split_transaction
        inputs: UTXO data, one per transaction input in the same order
        public_key_no_coord: 32-byte x-only public key of the signer

    Returns:
        PSBT hex

    Raises:
        InputValidationError: If the key or transaction is malformed
        StructuralMismatchError: If UTXOs do not match the inputs or are not Taproot
    """
    if len(public_key_no_coord) != 32:
        raise InputValidationError(
            f"Public key must be 32 bytes (x-only), got {len(public_key_no_coord)}"
        )

    try:
        tx = Transaction.from_hex(unsigned_tx_hex)
    except (ValueError, IndexError) as e:
        raise InputValidationError(f"Failed to parse split transaction: {e}")

    if len(inputs) != len(tx.inputs):
        raise StructuralMismatchError(
            f"UTXO count ({len(inputs)}) does not match transaction input count "
            f"({len(tx.inputs)})"
        )

    builder = BasePSBTBuilder(version=tx.version, locktime=tx.locktime)

    for index, (tx_input, utxo) in enumerate(zip(tx.inputs, inputs)):
        if tx_input.txid != utxo.txid.lower() or tx_input.vout != utxo.vout:
            raise StructuralMismatchError(
                f"Input {index} outpoint mismatch: transaction spends "
                f"{tx_input.txid}:{tx_input.vout}, UTXO is {utxo.txid}:{utxo.vout}"
            )

        try:
            script = bytes.fromhex(utxo.script_pubkey)
        except ValueError:
            raise InputValidationError(f"Invalid script hex for input {index}: {utxo.script_pubkey}")
        if not is_p2tr_script(script):
            raise StructuralMismatchError(
                f"Input {index} is not a Taproot output (script {utxo.script_pubkey}); "
                f"split transactions only spend P2TR UTXOs"
            )

        builder.add_input(
            tx_input.txid,
            tx_input.vout,
            sequence=tx_input.sequence,
            witness_utxo=TxOut(value=utxo.value, script=script),
            tap_internal_key=public_key_no_coord,
        )

    for tx_output in tx.outputs:
        builder.add_output(tx_output.script, tx_output.value)

    return builder.to_hex()
