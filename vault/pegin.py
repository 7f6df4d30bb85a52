"""
Vault Transaction Builder - Peg-in Template

Obtains the unfunded peg-in transaction from the script engine. The result
is passed to the funder unchanged.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from psbt.exceptions import InputValidationError
from psbt.address import get_network

from .interfaces import ScriptEngine
from .pubkeys import is_valid_hex


logger = logging.getLogger(__name__)


@dataclass
class PeginParams:
    depositor_pubkey: str
    vault_provider_pubkey: str
    vault_keeper_pubkeys: List[str] = field(default_factory=list)
    universal_challenger_pubkeys: List[str] = field(default_factory=list)
    pegin_amount: int = 0
    network: str = 'signet'


@dataclass
class PeginPsbtResult:
    """Unfunded peg-in transaction as produced by the engine."""
    unfunded_tx_hex: str
    txid: str
    vault_script_pubkey: str
    vault_value: int


def _require_x_only(pubkey: str, role: str) -> None:
    if not pubkey or len(pubkey) != 64 or not is_valid_hex(pubkey):
        raise InputValidationError(f"Invalid {role} public key: expected 64 hex characters (x-only)")


async def build_pegin_psbt(engine: ScriptEngine, params: PeginParams) -> PeginPsbtResult:
    """
    Build the unfunded peg-in transaction for a vault.

    Args:
        engine: Script engine generating the vault output
        params: Signer keys, amount and network

    Returns:
        PeginPsbtResult with the unfunded transaction hex, txid and vault output

    Raises:
        InputValidationError: For malformed keys, amount or network
    """
    _require_x_only(params.depositor_pubkey, "depositor")
    _require_x_only(params.vault_provider_pubkey, "vault provider")
    for pubkey in params.vault_keeper_pubkeys:
        _require_x_only(pubkey, "vault keeper")
    for pubkey in params.universal_challenger_pubkeys:
        _require_x_only(pubkey, "universal challenger")
    if params.pegin_amount <= 0:
        raise InputValidationError(f"Peg-in amount must be positive, got {params.pegin_amount}")
    get_network(params.network)

    pegin_tx = await engine.create_pegin_transaction(
        depositor=params.depositor_pubkey,
        vault_provider=params.vault_provider_pubkey,
        vault_keepers=list(params.vault_keeper_pubkeys),
        universal_challengers=list(params.universal_challenger_pubkeys),
        pegin_amount=params.pegin_amount,
        network=params.network,
    )

    logger.debug(f"Engine produced peg-in template {pegin_tx.txid} "
                 f"({pegin_tx.vault_value} sats)")

    return PeginPsbtResult(
        unfunded_tx_hex=pegin_tx.tx_hex,
        txid=pegin_tx.txid,
        vault_script_pubkey=pegin_tx.vault_script_pubkey,
        vault_value=pegin_tx.vault_value,
    )
