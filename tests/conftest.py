"""
Pytest configuration and fixtures for vault transaction tests.
"""

from typing import List, Optional

import pytest

from crypto.taproot import tap_leaf_hash
from psbt.builder import BasePSBTBuilder
from psbt.parser import parse_psbt
from psbt.transaction import Transaction
from utxo.models import UTXO
from vault.pubkeys import process_public_key_to_x_only
from vault.interfaces import (
    BitcoinWallet,
    PayoutScript,
    PeginTransaction,
    ScriptEngine,
    SignPsbtOptions,
)


# x coordinates of G and 2G
DEPOSITOR_PUBKEY = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
INTERNAL_KEY = "c6047f9441ed7d6d3045406e95c07cd85c778e4b8cef3ca7abac09b95c709ee5"

VAULT_PROVIDER_PUBKEY = "aa" * 32
VAULT_KEEPER_PUBKEYS = ["bb" * 32]
UNIVERSAL_CHALLENGER_PUBKEYS = ["cc" * 32, "dd" * 32]

P2TR_SCRIPT = "5120abcdef1234567890abcdef1234567890abcdef1234567890abcdef1234567890"
PAYOUT_LEAF_SCRIPT = "20" + DEPOSITOR_PUBKEY + "ac"

# Version 2 segwit template: 0 inputs, one 100000 sat P2TR output
UNFUNDED_TEMPLATE_HEX = (
    "02000000" + "0001" + "00" + "01"
    + "a086010000000000" + "22" + P2TR_SCRIPT
    + "00000000"
)

TESTNET_ADDRESS = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"
MAINNET_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
P2WPKH_SCRIPT = "0014751e76e8199196d454941c45d1b3a323f1433bd6"

FAKE_SIGNATURE = bytes([0x11]) * 64


class FakeScriptEngine(ScriptEngine):
    """Script engine returning fixed templates and recording its calls."""

    def __init__(self, pegin_tx_hex: str = UNFUNDED_TEMPLATE_HEX,
                 payout_script: str = PAYOUT_LEAF_SCRIPT,
                 internal_key: str = INTERNAL_KEY):
        self.pegin_tx_hex = pegin_tx_hex
        self.payout_script = payout_script
        self.internal_key = internal_key
        self.pegin_calls = []
        self.payout_calls = []

    async def create_pegin_transaction(self, depositor, vault_provider, vault_keepers,
                                       universal_challengers, pegin_amount, network):
        self.pegin_calls.append({
            'depositor': depositor,
            'vault_provider': vault_provider,
            'vault_keepers': vault_keepers,
            'universal_challengers': universal_challengers,
            'pegin_amount': pegin_amount,
            'network': network,
        })
        return PeginTransaction(
            tx_hex=self.pegin_tx_hex,
            txid="ee" * 32,
            vault_script_pubkey=P2TR_SCRIPT,
            vault_value=pegin_amount,
        )

    async def create_payout_script(self, depositor, vault_provider, vault_keepers,
                                   universal_challengers, network):
        self.payout_calls.append({
            'depositor': depositor,
            'vault_provider': vault_provider,
            'vault_keepers': vault_keepers,
            'universal_challengers': universal_challengers,
            'network': network,
        })
        return PayoutScript(payout_script=self.payout_script, internal_key=self.internal_key)


def add_tap_script_sig(psbt_hex: str, xonly_pubkey: bytes,
                       signature: bytes = FAKE_SIGNATURE) -> str:
    """Return the PSBT with a tap script signature on input 0."""
    parsed = parse_psbt(psbt_hex)

    builder = BasePSBTBuilder()
    builder.tx = parsed.unsigned_tx
    builder.psbt_inputs = parsed.inputs
    builder.psbt_outputs = parsed.outputs

    first_input = builder.psbt_inputs[0]
    if first_input.tap_leaf_scripts:
        leaf = first_input.tap_leaf_scripts[0]
        leaf_hash = tap_leaf_hash(leaf.script, leaf.leaf_version)
    else:
        leaf_hash = bytes(32)
    first_input.tap_script_sigs[(xonly_pubkey, leaf_hash)] = signature

    return builder.to_hex()


class FakeWallet(BitcoinWallet):
    """Wallet that signs input 0 with a fixed signature."""

    def __init__(self, public_key_hex: str = "02" + DEPOSITOR_PUBKEY,
                 signature: bytes = FAKE_SIGNATURE):
        self.public_key_hex = public_key_hex
        self.signature = signature
        self.sign_calls = []

    async def get_public_key_hex(self) -> str:
        return self.public_key_hex

    async def sign_psbt(self, psbt_hex: str, options: Optional[SignPsbtOptions] = None) -> str:
        self.sign_calls.append((psbt_hex, options))
        xonly = bytes.fromhex(process_public_key_to_x_only(self.public_key_hex))
        return add_tap_script_sig(psbt_hex, xonly, self.signature)


class FakeBatchWallet(FakeWallet):
    """Wallet that can also sign several PSBTs in one call."""

    def __init__(self, *args, drop_last: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.drop_last = drop_last
        self.batch_calls = []

    async def sign_psbts(self, psbt_hexes: List[str], options: List[SignPsbtOptions]) -> List[str]:
        self.batch_calls.append((list(psbt_hexes), list(options)))
        signed = [await self.sign_psbt(psbt_hex, option)
                  for psbt_hex, option in zip(psbt_hexes, options)]
        return signed[:-1] if self.drop_last else signed


def build_prev_tx(funding_txid: str, value: int, script_hex: str = P2TR_SCRIPT) -> Transaction:
    """One-input transaction whose output 0 is referenced by payout transactions."""
    tx = Transaction(version=2)
    tx.add_input(funding_txid, 0)
    tx.add_output(bytes.fromhex(script_hex), value)
    return tx


def build_payout_tx(pegin_tx: Transaction, reference_tx: Transaction,
                    value: int = 140000) -> Transaction:
    tx = Transaction(version=2)
    tx.add_input(pegin_tx.txid, 0)
    tx.add_input(reference_tx.txid, 0)
    tx.add_output(bytes.fromhex(P2TR_SCRIPT), value)
    return tx


@pytest.fixture
def script_engine():
    return FakeScriptEngine()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def batch_wallet():
    return FakeBatchWallet()


@pytest.fixture
def sample_utxos():
    """Three P2TR UTXOs with distinct values."""
    return [
        UTXO(txid="11" * 32, vout=0, value=50000, script_pubkey=P2TR_SCRIPT),
        UTXO(txid="22" * 32, vout=1, value=100000, script_pubkey=P2TR_SCRIPT),
        UTXO(txid="33" * 32, vout=2, value=30000, script_pubkey=P2TR_SCRIPT),
    ]


@pytest.fixture
def payout_transactions():
    """Peg-in, claim, assert and the two payout transactions spending them."""
    pegin_tx = build_prev_tx("a1" * 32, 100000)
    claim_tx = build_prev_tx("b1" * 32, 50000)
    assert_tx = build_prev_tx("c1" * 32, 45000)
    return {
        'pegin': pegin_tx,
        'claim': claim_tx,
        'assert': assert_tx,
        'payout_optimistic': build_payout_tx(pegin_tx, claim_tx),
        'payout': build_payout_tx(pegin_tx, assert_tx),
    }


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "asyncflow: mark test as driving an async manager or builder"
    )
    config.addinivalue_line(
        "markers", "cli: mark test as exercising the command line"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location and name."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        if "cli" in item.name or "test_cli" in str(item.fspath):
            item.add_marker(pytest.mark.cli)
        if "manager" in str(item.fspath) or "payout" in str(item.fspath):
            item.add_marker(pytest.mark.asyncflow)
