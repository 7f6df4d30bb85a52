"""
Vault Transaction Builder - Payout Manager

Collects the depositor's signatures on payout transactions. Each claim
produces two transactions to sign: PayoutOptimistic (spending the claim
output) and Payout (spending the assert output).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from psbt.exceptions import StructuralMismatchError, UnsupportedCapabilityError
from psbt.payout import (
    PayoutOptimisticParams,
    PayoutParams,
    build_payout_optimistic_psbt,
    build_payout_psbt,
)
from psbt.signature import extract_payout_signature

from .interfaces import BitcoinWallet, ScriptEngine, SignInputOptions, SignPsbtOptions
from .pubkeys import validate_wallet_pubkey


@dataclass
class SignPayoutOptimisticParams:
    payout_optimistic_tx_hex: str
    pegin_tx_hex: str
    claim_tx_hex: str
    vault_provider_btc_pubkey: str
    vault_keeper_btc_pubkeys: List[str] = field(default_factory=list)
    universal_challenger_btc_pubkeys: List[str] = field(default_factory=list)
    depositor_btc_pubkey: Optional[str] = None


@dataclass
class SignPayoutParams:
    payout_tx_hex: str
    pegin_tx_hex: str
    assert_tx_hex: str
    vault_provider_btc_pubkey: str
    vault_keeper_btc_pubkeys: List[str] = field(default_factory=list)
    universal_challenger_btc_pubkeys: List[str] = field(default_factory=list)
    depositor_btc_pubkey: Optional[str] = None


@dataclass
class PayoutSignatureResult:
    signature: str
    depositor_btc_pubkey: str


@dataclass
class PayoutSignaturePair:
    payout_optimistic_signature: str
    payout_signature: str
    depositor_btc_pubkey: str


@dataclass
class PayoutBatchItem:
    payout_optimistic: SignPayoutOptimisticParams
    payout: SignPayoutParams


def payout_sign_options(wallet_pubkey_raw: str) -> SignPsbtOptions:
    """
    Wallet options for payout PSBTs: sign input 0 only, with the untweaked
    key, and leave the PSBT unfinalized so the signature can be read back.
    """
    return SignPsbtOptions(
        auto_finalized=False,
        sign_inputs=[
            SignInputOptions(index=0, public_key=wallet_pubkey_raw, disable_tweak_signer=True),
        ],
    )


class PayoutManager:
    """
    Signs payout transactions with the depositor wallet.
    """

    def __init__(self, network: str, btc_wallet: BitcoinWallet, engine: ScriptEngine):
        """
        Initialize the manager.

        Args:
            network: Bitcoin network name
            btc_wallet: Depositor wallet
            engine: Script engine producing the payout leaf script
        """
        self.network = network
        self.btc_wallet = btc_wallet
        self.engine = engine
        self.logger = logging.getLogger(__name__)

    def get_network(self) -> str:
        return self.network

    def supports_batch_signing(self) -> bool:
        return callable(getattr(self.btc_wallet, 'sign_psbts', None))

    async def _build_optimistic(self, params: SignPayoutOptimisticParams, depositor: str) -> str:
        result = await build_payout_optimistic_psbt(self.engine, PayoutOptimisticParams(
            payout_tx_hex=params.payout_optimistic_tx_hex,
            pegin_tx_hex=params.pegin_tx_hex,
            claim_tx_hex=params.claim_tx_hex,
            depositor_btc_pubkey=depositor,
            vault_provider_btc_pubkey=params.vault_provider_btc_pubkey,
            vault_keeper_btc_pubkeys=params.vault_keeper_btc_pubkeys,
            universal_challenger_btc_pubkeys=params.universal_challenger_btc_pubkeys,
            network=self.network,
        ))
        return result.psbt_hex

    async def _build_payout(self, params: SignPayoutParams, depositor: str) -> str:
        result = await build_payout_psbt(self.engine, PayoutParams(
            payout_tx_hex=params.payout_tx_hex,
            pegin_tx_hex=params.pegin_tx_hex,
            assert_tx_hex=params.assert_tx_hex,
            depositor_btc_pubkey=depositor,
            vault_provider_btc_pubkey=params.vault_provider_btc_pubkey,
            vault_keeper_btc_pubkeys=params.vault_keeper_btc_pubkeys,
            universal_challenger_btc_pubkeys=params.universal_challenger_btc_pubkeys,
            network=self.network,
        ))
        return result.psbt_hex

    async def sign_payout_optimistic_transaction(
        self,
        params: SignPayoutOptimisticParams
    ) -> PayoutSignatureResult:
        """
        Sign a PayoutOptimistic transaction.

        Args:
            params: PayoutOptimistic, peg-in and claim transactions plus signer keys

        Returns:
            PayoutSignatureResult with the 64-byte signature hex
        """
        wallet_pubkey_raw = await self.btc_wallet.get_public_key_hex()
        depositor = validate_wallet_pubkey(wallet_pubkey_raw, params.depositor_btc_pubkey).depositor_pubkey

        psbt_hex = await self._build_optimistic(params, depositor)
        signed_psbt_hex = await self.btc_wallet.sign_psbt(psbt_hex, payout_sign_options(wallet_pubkey_raw))

        signature = extract_payout_signature(signed_psbt_hex, depositor)
        self.logger.info("Collected depositor signature for PayoutOptimistic transaction")
        return PayoutSignatureResult(signature=signature, depositor_btc_pubkey=depositor)

    async def sign_payout_transaction(self, params: SignPayoutParams) -> PayoutSignatureResult:
        """
        Sign a Payout transaction.

        Args:
            params: Payout, peg-in and assert transactions plus signer keys

        Returns:
            PayoutSignatureResult with the 64-byte signature hex
        """
        wallet_pubkey_raw = await self.btc_wallet.get_public_key_hex()
        depositor = validate_wallet_pubkey(wallet_pubkey_raw, params.depositor_btc_pubkey).depositor_pubkey

        psbt_hex = await self._build_payout(params, depositor)
        signed_psbt_hex = await self.btc_wallet.sign_psbt(psbt_hex, payout_sign_options(wallet_pubkey_raw))

        signature = extract_payout_signature(signed_psbt_hex, depositor)
        self.logger.info("Collected depositor signature for Payout transaction")
        return PayoutSignatureResult(signature=signature, depositor_btc_pubkey=depositor)

    async def sign_payout_transactions_batch(
        self,
        transactions: Sequence[PayoutBatchItem]
    ) -> List[PayoutSignaturePair]:
        """
        Sign the PayoutOptimistic and Payout transactions of several claims
        in a single wallet interaction.

        PSBTs are sent as [optimistic_0, payout_0, optimistic_1, payout_1, ...].

        Args:
            transactions: One PayoutBatchItem per claim

        Returns:
            One PayoutSignaturePair per claim, in input order

        Raises:
            UnsupportedCapabilityError: If the wallet has no sign_psbts
            InputValidationError: If either half of an item names another depositor
            StructuralMismatchError: If the wallet returns the wrong number of PSBTs
        """
        if not self.supports_batch_signing():
            raise UnsupportedCapabilityError("Wallet does not support batch signing")

        wallet_pubkey_raw = await self.btc_wallet.get_public_key_hex()

        psbts_to_sign: List[str] = []
        sign_options: List[SignPsbtOptions] = []
        depositors: List[str] = []

        for item in transactions:
            depositor = validate_wallet_pubkey(
                wallet_pubkey_raw, item.payout_optimistic.depositor_btc_pubkey
            ).depositor_pubkey
            # Both halves are signed with the same key
            validate_wallet_pubkey(wallet_pubkey_raw, item.payout.depositor_btc_pubkey)
            depositors.append(depositor)

            psbts_to_sign.append(await self._build_optimistic(item.payout_optimistic, depositor))
            sign_options.append(payout_sign_options(wallet_pubkey_raw))

            psbts_to_sign.append(await self._build_payout(item.payout, depositor))
            sign_options.append(payout_sign_options(wallet_pubkey_raw))

        signed_psbts = await self.btc_wallet.sign_psbts(psbts_to_sign, sign_options)

        expected_count = len(transactions) * 2
        if len(signed_psbts) != expected_count:
            raise StructuralMismatchError(
                f"Expected {expected_count} signed PSBTs ({len(transactions)} transactions x 2) "
                f"but received {len(signed_psbts)}"
            )

        results = []
        for index, depositor in enumerate(depositors):
            results.append(PayoutSignaturePair(
                payout_optimistic_signature=extract_payout_signature(signed_psbts[index * 2], depositor),
                payout_signature=extract_payout_signature(signed_psbts[index * 2 + 1], depositor),
                depositor_btc_pubkey=depositor,
            ))

        self.logger.info(f"Batch signed {expected_count} payout PSBTs")
        return results
