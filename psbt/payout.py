"""
Vault Transaction Builder - Payout PSBT Construction

Builds the unsigned PSBTs the depositor signs to release vault funds. A
payout transaction always has two inputs:

- input 0 spends the vault output of the peg-in transaction through the
  payout leaf (the depositor signs this one),
- input 1 spends output 0 of the claim transaction (optimistic path) or of
  the assert transaction (challenged path) and is signed by other parties.

Taproot's default sighash commits to every input's previous output, so both
inputs carry witness_utxo even though the depositor signs only input 0.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from crypto.exceptions import CryptoError
from crypto.taproot import create_tap_script_control_block, TAPSCRIPT_LEAF_VERSION

from .builder import BasePSBTBuilder, TapLeafScript
from .exceptions import InputValidationError, StructuralMismatchError
from .transaction import Transaction


logger = logging.getLogger(__name__)


PAYOUT_INPUT_COUNT = 2
VAULT_INPUT_INDEX = 0
REFERENCE_INPUT_INDEX = 1


@dataclass
class PayoutPsbtParams:
    """Common inputs of both payout PSBT flavours."""
    payout_tx_hex: str
    pegin_tx_hex: str
    depositor_btc_pubkey: str
    vault_provider_btc_pubkey: str
    vault_keeper_btc_pubkeys: List[str]
    universal_challenger_btc_pubkeys: List[str]
    network: str


@dataclass
class PayoutOptimisticParams(PayoutPsbtParams):
    """Payout through the optimistic path, referencing the claim transaction."""
    claim_tx_hex: str = field(default='')


@dataclass
class PayoutParams(PayoutPsbtParams):
    """Payout through the challenged path, referencing the assert transaction."""
    assert_tx_hex: str = field(default='')


@dataclass
class PayoutPsbtResult:
    psbt_hex: str


def _parse_tx(tx_hex: str, label: str) -> Transaction:
    if not tx_hex:
        raise InputValidationError(f"{label} transaction hex is required")
    try:
        return Transaction.from_hex(tx_hex)
    except (ValueError, IndexError) as e:
        raise InputValidationError(f"Failed to parse {label} transaction: {e}")


def _check_reference(payout_tx: Transaction, index: int, prev_tx: Transaction, label: str):
    """Input ``index`` must spend output 0 of ``prev_tx``; return that output."""
    tx_input = payout_tx.inputs[index]
    expected_txid = prev_tx.txid

    if tx_input.txid != expected_txid:
        raise StructuralMismatchError(
            f"Input {index} must spend the {label} transaction {expected_txid}, "
            f"got {tx_input.txid}"
        )
    if tx_input.vout != 0:
        raise StructuralMismatchError(
            f"Input {index} must spend output 0 of the {label} transaction, "
            f"got output {tx_input.vout}"
        )
    if tx_input.vout >= len(prev_tx.outputs):
        raise StructuralMismatchError(
            f"Previous output not found for input {index} "
            f"(txid: {tx_input.txid}, index: {tx_input.vout})"
        )
    return prev_tx.outputs[tx_input.vout]


async def _build_payout_psbt(engine, params: PayoutPsbtParams, reference_tx_hex: str,
                             reference_label: str) -> PayoutPsbtResult:
    payout_tx = _parse_tx(params.payout_tx_hex, "payout")
    pegin_tx = _parse_tx(params.pegin_tx_hex, "peg-in")
    reference_tx = _parse_tx(reference_tx_hex, reference_label)

    if len(payout_tx.inputs) != PAYOUT_INPUT_COUNT:
        raise StructuralMismatchError(
            f"Payout transaction must have exactly {PAYOUT_INPUT_COUNT} inputs, "
            f"got {len(payout_tx.inputs)}"
        )

    vault_output = _check_reference(payout_tx, VAULT_INPUT_INDEX, pegin_tx, "peg-in")
    reference_output = _check_reference(payout_tx, REFERENCE_INPUT_INDEX, reference_tx,
                                        reference_label)

    payout_connector = await engine.create_payout_script(
        depositor=params.depositor_btc_pubkey,
        vault_provider=params.vault_provider_btc_pubkey,
        vault_keepers=list(params.vault_keeper_btc_pubkeys),
        universal_challengers=list(params.universal_challenger_btc_pubkeys),
        network=params.network,
    )

    try:
        payout_script = bytes.fromhex(payout_connector.payout_script)
        internal_key = bytes.fromhex(payout_connector.internal_key)
        control_block = create_tap_script_control_block(internal_key, payout_script)
    except ValueError as e:
        raise InputValidationError(f"Invalid payout script from engine: {e}")
    except CryptoError as e:
        raise InputValidationError(f"Cannot compute payout control block: {e}")

    builder = BasePSBTBuilder(version=payout_tx.version, locktime=payout_tx.locktime)

    vault_input = payout_tx.inputs[VAULT_INPUT_INDEX]
    builder.add_input(
        vault_input.txid,
        vault_input.vout,
        sequence=vault_input.sequence,
        witness_utxo=vault_output,
        tap_internal_key=internal_key,
        tap_leaf_script=TapLeafScript(
            control_block=control_block,
            script=payout_script,
            leaf_version=TAPSCRIPT_LEAF_VERSION,
        ),
    )

    # Signed by the claimer, not the depositor
    reference_input = payout_tx.inputs[REFERENCE_INPUT_INDEX]
    builder.add_input(
        reference_input.txid,
        reference_input.vout,
        sequence=reference_input.sequence,
        witness_utxo=reference_output,
    )

    for tx_output in payout_tx.outputs:
        builder.add_output(tx_output.script, tx_output.value)

    logger.debug(f"Built payout PSBT for {payout_tx.txid} against {reference_label} "
                 f"transaction {reference_tx.txid}")

    return PayoutPsbtResult(psbt_hex=builder.to_hex())


async def build_payout_optimistic_psbt(engine, params: PayoutOptimisticParams) -> PayoutPsbtResult:
    """
    Build the unsigned PayoutOptimistic PSBT (input 1 spends the claim transaction).

    Args:
        engine: Script engine providing create_payout_script
        params: Payout, peg-in and claim transactions plus signer keys

    Returns:
        PayoutPsbtResult with the PSBT hex

    Raises:
        InputValidationError: If a transaction or the engine output cannot be decoded
        StructuralMismatchError: If the payout does not spend the expected outputs
    """
    return await _build_payout_psbt(engine, params, params.claim_tx_hex, "claim")


async def build_payout_psbt(engine, params: PayoutParams) -> PayoutPsbtResult:
    """
    Build the unsigned Payout PSBT (input 1 spends the assert transaction).

    Args:
        engine: Script engine providing create_payout_script
        params: Payout, peg-in and assert transactions plus signer keys

    Returns:
        PayoutPsbtResult with the PSBT hex
    """
    return await _build_payout_psbt(engine, params, params.assert_tx_hex, "assert")
