"""
Tests for PayoutManager signature collection.
"""

import asyncio

import pytest

from psbt.exceptions import (
    InputValidationError,
    StructuralMismatchError,
    UnsupportedCapabilityError,
)
from psbt.parser import parse_psbt
from vault.payout_manager import (
    PayoutBatchItem,
    PayoutManager,
    SignPayoutOptimisticParams,
    SignPayoutParams,
)

from conftest import (
    DEPOSITOR_PUBKEY,
    FAKE_SIGNATURE,
    INTERNAL_KEY,
    UNIVERSAL_CHALLENGER_PUBKEYS,
    VAULT_KEEPER_PUBKEYS,
    VAULT_PROVIDER_PUBKEY,
    FakeBatchWallet,
)


def optimistic_params(txs, depositor=DEPOSITOR_PUBKEY) -> SignPayoutOptimisticParams:
    return SignPayoutOptimisticParams(
        payout_optimistic_tx_hex=txs['payout_optimistic'].to_hex(),
        pegin_tx_hex=txs['pegin'].to_hex(),
        claim_tx_hex=txs['claim'].to_hex(),
        vault_provider_btc_pubkey=VAULT_PROVIDER_PUBKEY,
        vault_keeper_btc_pubkeys=VAULT_KEEPER_PUBKEYS,
        universal_challenger_btc_pubkeys=UNIVERSAL_CHALLENGER_PUBKEYS,
        depositor_btc_pubkey=depositor,
    )


def payout_params(txs, depositor=DEPOSITOR_PUBKEY) -> SignPayoutParams:
    return SignPayoutParams(
        payout_tx_hex=txs['payout'].to_hex(),
        pegin_tx_hex=txs['pegin'].to_hex(),
        assert_tx_hex=txs['assert'].to_hex(),
        vault_provider_btc_pubkey=VAULT_PROVIDER_PUBKEY,
        vault_keeper_btc_pubkeys=VAULT_KEEPER_PUBKEYS,
        universal_challenger_btc_pubkeys=UNIVERSAL_CHALLENGER_PUBKEYS,
        depositor_btc_pubkey=depositor,
    )


class TestSinglePayoutSigning:
    """Test signing one payout transaction at a time."""

    def test_sign_payout_optimistic(self, wallet, script_engine, payout_transactions):
        manager = PayoutManager('signet', wallet, script_engine)

        result = asyncio.run(manager.sign_payout_optimistic_transaction(
            optimistic_params(payout_transactions)
        ))

        assert result.signature == FAKE_SIGNATURE.hex()
        assert result.depositor_btc_pubkey == DEPOSITOR_PUBKEY

    def test_sign_options(self, wallet, script_engine, payout_transactions):
        """Test the wallet signs input 0 only, untweaked and unfinalized."""
        manager = PayoutManager('signet', wallet, script_engine)

        asyncio.run(manager.sign_payout_transaction(payout_params(payout_transactions)))

        psbt_hex, options = wallet.sign_calls[0]
        assert options.auto_finalized is False
        assert len(options.sign_inputs) == 1
        assert options.sign_inputs[0].index == 0
        assert options.sign_inputs[0].public_key == "02" + DEPOSITOR_PUBKEY
        assert options.sign_inputs[0].disable_tweak_signer is True
        assert options.to_dict()['signInputs'][0]['disableTweakSigner'] is True

        parsed = parse_psbt(psbt_hex)
        assert parsed.inputs[1].witness_utxo == payout_transactions['assert'].outputs[0]

    def test_depositor_defaults_to_wallet_key(self, wallet, script_engine, payout_transactions):
        manager = PayoutManager('signet', wallet, script_engine)

        result = asyncio.run(manager.sign_payout_transaction(
            payout_params(payout_transactions, depositor=None)
        ))

        assert result.depositor_btc_pubkey == DEPOSITOR_PUBKEY
        assert script_engine.payout_calls[0]['depositor'] == DEPOSITOR_PUBKEY

    def test_rejects_foreign_wallet(self, wallet, script_engine, payout_transactions):
        manager = PayoutManager('signet', wallet, script_engine)

        with pytest.raises(InputValidationError, match="does not match vault depositor"):
            asyncio.run(manager.sign_payout_optimistic_transaction(
                optimistic_params(payout_transactions, depositor=INTERNAL_KEY)
            ))
        assert wallet.sign_calls == []

    def test_network_passed_to_engine(self, wallet, script_engine, payout_transactions):
        manager = PayoutManager('regtest', wallet, script_engine)

        asyncio.run(manager.sign_payout_optimistic_transaction(optimistic_params(payout_transactions)))

        assert manager.get_network() == 'regtest'
        assert script_engine.payout_calls[0]['network'] == 'regtest'


class TestBatchPayoutSigning:
    """Test batch signing across several claims."""

    def test_supports_batch_signing(self, wallet, batch_wallet, script_engine):
        assert not PayoutManager('signet', wallet, script_engine).supports_batch_signing()
        assert PayoutManager('signet', batch_wallet, script_engine).supports_batch_signing()

    def test_batch_requires_capability(self, wallet, script_engine, payout_transactions):
        manager = PayoutManager('signet', wallet, script_engine)
        item = PayoutBatchItem(optimistic_params(payout_transactions), payout_params(payout_transactions))

        with pytest.raises(UnsupportedCapabilityError, match="Wallet does not support batch signing"):
            asyncio.run(manager.sign_payout_transactions_batch([item]))

    def test_batch_signs_two_per_claim(self, batch_wallet, script_engine, payout_transactions):
        manager = PayoutManager('signet', batch_wallet, script_engine)
        item = PayoutBatchItem(optimistic_params(payout_transactions), payout_params(payout_transactions))

        results = asyncio.run(manager.sign_payout_transactions_batch([item, item]))

        assert len(results) == 2
        for pair in results:
            assert pair.payout_optimistic_signature == FAKE_SIGNATURE.hex()
            assert pair.payout_signature == FAKE_SIGNATURE.hex()
            assert pair.depositor_btc_pubkey == DEPOSITOR_PUBKEY

        assert len(batch_wallet.batch_calls) == 1
        psbts, options = batch_wallet.batch_calls[0]
        assert len(psbts) == 4
        assert all(option.auto_finalized is False for option in options)

    def test_batch_order_is_optimistic_then_payout(self, batch_wallet, script_engine,
                                                   payout_transactions):
        manager = PayoutManager('signet', batch_wallet, script_engine)
        item = PayoutBatchItem(optimistic_params(payout_transactions), payout_params(payout_transactions))

        asyncio.run(manager.sign_payout_transactions_batch([item]))

        psbts, _ = batch_wallet.batch_calls[0]
        claim_value = payout_transactions['claim'].outputs[0].value
        assert_value = payout_transactions['assert'].outputs[0].value
        assert parse_psbt(psbts[0]).inputs[1].witness_utxo.value == claim_value
        assert parse_psbt(psbts[1]).inputs[1].witness_utxo.value == assert_value

    def test_batch_count_mismatch(self, script_engine, payout_transactions):
        wallet = FakeBatchWallet(drop_last=True)
        manager = PayoutManager('signet', wallet, script_engine)
        item = PayoutBatchItem(optimistic_params(payout_transactions), payout_params(payout_transactions))

        with pytest.raises(StructuralMismatchError, match="Expected 4 signed PSBTs"):
            asyncio.run(manager.sign_payout_transactions_batch([item, item]))

    def test_batch_rejects_foreign_payout_depositor(self, batch_wallet, script_engine,
                                                    payout_transactions):
        """Test the Payout half is checked against the wallet as well."""
        manager = PayoutManager('signet', batch_wallet, script_engine)
        item = PayoutBatchItem(optimistic_params(payout_transactions),
                               payout_params(payout_transactions, depositor=INTERNAL_KEY))

        with pytest.raises(InputValidationError, match="does not match vault depositor"):
            asyncio.run(manager.sign_payout_transactions_batch([item]))
        assert batch_wallet.batch_calls == []
        assert script_engine.payout_calls == []
