"""
Vault Transaction Builder - Peg-in Manager

Orchestrates the depositor side of a peg-in: template generation by the
script engine, UTXO selection, funding and wallet signing. Broadcasting the
signed transaction is left to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from psbt.builder import BasePSBTBuilder
from psbt.exceptions import InputValidationError, StructuralMismatchError
from psbt.funding import fund_pegin_transaction
from psbt.transaction import Transaction, TxOut
from utxo.models import UTXO
from utxo.selection import select_utxos_for_pegin

from .interfaces import BitcoinWallet, ScriptEngine
from .pegin import PeginParams, build_pegin_psbt
from .pubkeys import process_public_key_to_x_only, hex_to_bytes


@dataclass
class CreatePeginParams:
    amount: int
    vault_provider_btc_pubkey: str
    vault_keeper_btc_pubkeys: List[str]
    universal_challenger_btc_pubkeys: List[str]
    available_utxos: List[UTXO]
    fee_rate: float
    change_address: str


@dataclass
class PeginResult:
    btc_txid: str
    funded_tx_hex: str
    vault_script_pubkey: str
    selected_utxos: List[UTXO] = field(default_factory=list)
    fee: int = 0
    change_amount: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'btc_txid': self.btc_txid,
            'funded_tx_hex': self.funded_tx_hex,
            'vault_script_pubkey': self.vault_script_pubkey,
            'selected_utxos': [utxo.to_dict() for utxo in self.selected_utxos],
            'fee': self.fee,
            'change_amount': self.change_amount,
        }


class PeginManager:
    """
    High-level peg-in flow for a depositor wallet.
    """

    def __init__(self, network: str, btc_wallet: BitcoinWallet, engine: ScriptEngine):
        """
        Initialize the manager.

        Args:
            network: Bitcoin network name
            btc_wallet: Depositor wallet
            engine: Script engine producing peg-in templates
        """
        self.network = network
        self.btc_wallet = btc_wallet
        self.engine = engine
        self.logger = logging.getLogger(__name__)

    async def prepare_pegin(self, params: CreatePeginParams) -> PeginResult:
        """
        Build a funded, unsigned peg-in transaction.

        Args:
            params: Amount, counterparty keys, UTXOs, fee rate and change address

        Returns:
            PeginResult with the funded transaction and selection details
        """
        wallet_pubkey_raw = await self.btc_wallet.get_public_key_hex()
        depositor_pubkey = process_public_key_to_x_only(wallet_pubkey_raw)

        pegin = await build_pegin_psbt(self.engine, PeginParams(
            depositor_pubkey=depositor_pubkey,
            vault_provider_pubkey=params.vault_provider_btc_pubkey,
            vault_keeper_pubkeys=params.vault_keeper_btc_pubkeys,
            universal_challenger_pubkeys=params.universal_challenger_btc_pubkeys,
            pegin_amount=params.amount,
            network=self.network,
        ))

        selection = select_utxos_for_pegin(params.available_utxos, params.amount, params.fee_rate)

        funded_tx_hex = fund_pegin_transaction(
            pegin.unfunded_tx_hex,
            selection.selected_utxos,
            params.change_address,
            selection.change_amount,
            self.network,
        )

        self.logger.info(f"Prepared peg-in {pegin.txid}: {len(selection.selected_utxos)} inputs, "
                         f"fee {selection.fee} sats, change {selection.change_amount} sats")

        return PeginResult(
            btc_txid=pegin.txid,
            funded_tx_hex=funded_tx_hex,
            vault_script_pubkey=pegin.vault_script_pubkey,
            selected_utxos=list(selection.selected_utxos),
            fee=selection.fee,
            change_amount=selection.change_amount,
        )

    def build_funded_pegin_psbt(self, funded_tx_hex: str, utxos: Sequence[UTXO],
                                depositor_pubkey: str) -> str:
        """
        Build the key-path signing PSBT for a funded peg-in transaction.

        Args:
            funded_tx_hex: Output of prepare_pegin
            utxos: UTXO data covering every input of the transaction
            depositor_pubkey: Depositor x-only key (64 hex chars)

        Returns:
            PSBT hex

        Raises:
            StructuralMismatchError: If an input has no matching UTXO
        """
        internal_key = hex_to_bytes(depositor_pubkey)
        if len(internal_key) != 32:
            raise InputValidationError(
                f"Invalid depositor public key length: expected 32 bytes, got {len(internal_key)}"
            )

        try:
            tx = Transaction.from_hex(funded_tx_hex)
        except (ValueError, IndexError) as e:
            raise InputValidationError(f"Failed to parse funded transaction: {e}")

        by_outpoint = {(utxo.txid.lower(), utxo.vout): utxo for utxo in utxos}

        builder = BasePSBTBuilder(version=tx.version, locktime=tx.locktime)
        for index, tx_input in enumerate(tx.inputs):
            utxo = by_outpoint.get((tx_input.txid, tx_input.vout))
            if utxo is None:
                raise StructuralMismatchError(
                    f"Missing UTXO data for input {index} ({tx_input.txid}:{tx_input.vout})"
                )
            builder.add_input(
                tx_input.txid,
                tx_input.vout,
                sequence=tx_input.sequence,
                witness_utxo=TxOut(value=utxo.value, script=hex_to_bytes(utxo.script_pubkey)),
                tap_internal_key=internal_key,
            )

        for tx_output in tx.outputs:
            builder.add_output(tx_output.script, tx_output.value)

        return builder.to_hex()

    async def sign_funded_pegin(self, funded_tx_hex: str, utxos: Sequence[UTXO]) -> str:
        """
        Have the wallet sign a funded peg-in transaction.

        Args:
            funded_tx_hex: Output of prepare_pegin
            utxos: UTXO data covering every input

        Returns:
            Signed PSBT hex, ready for finalization and broadcast by the caller
        """
        wallet_pubkey_raw = await self.btc_wallet.get_public_key_hex()
        depositor_pubkey = process_public_key_to_x_only(wallet_pubkey_raw)

        psbt_hex = self.build_funded_pegin_psbt(funded_tx_hex, utxos, depositor_pubkey)
        signed_psbt_hex = await self.btc_wallet.sign_psbt(psbt_hex)

        self.logger.info("Wallet signed funded peg-in transaction")
        return signed_psbt_hex
