"""
Tests for the vaulttx command line interface.
"""

import json
import logging

import pytest
from click.testing import CliRunner

import cli.main as cli_main
from cli import __version__
from cli.main import PACKAGE_LOGGERS, cli
from crypto.taproot import create_tap_script_control_block
from psbt.builder import BasePSBTBuilder
from psbt.transaction import Transaction, TxOut

from conftest import (
    DEPOSITOR_PUBKEY,
    FAKE_SIGNATURE,
    INTERNAL_KEY,
    P2TR_SCRIPT,
    P2WPKH_SCRIPT,
    PAYOUT_LEAF_SCRIPT,
    TESTNET_ADDRESS,
    UNFUNDED_TEMPLATE_HEX,
    add_tap_script_sig,
)


@pytest.fixture(autouse=True)
def detach_console_handler():
    """Drop the console handler a CLI run installs on the package loggers."""
    yield
    handler = cli_main._console_handler
    for name in PACKAGE_LOGGERS:
        logger = logging.getLogger(name)
        if handler is not None:
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
    cli_main._console_handler = None


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("network: testnet\nfee_rate: 1\n")
    return str(path)


@pytest.fixture
def utxo_file(tmp_path, sample_utxos):
    path = tmp_path / "utxos.json"
    path.write_text(json.dumps({'utxos': [utxo.to_dict() for utxo in sample_utxos]}))
    return str(path)


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def invoke(self, config_file, *args):
        return self.runner.invoke(cli, ['-c', config_file, '-o', 'json', *args])

    def test_cli_help(self):
        result = self.runner.invoke(cli, ['--help'])

        assert result.exit_code == 0
        assert 'Vault transaction builder' in result.output
        assert 'select-utxos' in result.output

    def test_cli_version(self):
        result = self.runner.invoke(cli, ['--version'])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_select_utxos(self, config_file, utxo_file):
        result = self.invoke(config_file, 'select-utxos', utxo_file, '--amount', '100000')

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [utxo['value'] for utxo in data['selected_utxos']] == [100000, 50000]
        assert data['fee'] == 243
        assert data['change_amount'] == 49757

    def test_select_utxos_fee_rate_option(self, config_file, utxo_file):
        result = self.invoke(config_file, 'select-utxos', utxo_file,
                             '--amount', '100000', '--fee-rate', '2')

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)['fee'] == 456

    def test_select_utxos_table_output(self, config_file, utxo_file):
        result = self.runner.invoke(cli, ['-c', config_file, 'select-utxos', utxo_file,
                                          '--amount', '100000'])

        assert result.exit_code == 0, result.output
        assert 'selected_utxos:' in result.output
        assert 'change_amount' in result.output

    def test_select_utxos_insufficient_funds(self, config_file, utxo_file):
        result = self.invoke(config_file, 'select-utxos', utxo_file, '--amount', '1000000')

        assert result.exit_code == 1
        assert 'Error:' in result.output

    def test_invalid_utxo_file(self, config_file, tmp_path):
        path = tmp_path / "utxos.json"
        path.write_text("{not json")

        result = self.invoke(config_file, 'select-utxos', str(path), '--amount', '1000')

        assert result.exit_code == 1
        assert 'Invalid JSON' in result.output

    def test_parse_template(self, config_file):
        result = self.invoke(config_file, 'parse-template', UNFUNDED_TEMPLATE_HEX)

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data['version'] == 2
        assert data['outputs'] == [{'value': 100000, 'script_pubkey': P2TR_SCRIPT}]

    def test_parse_template_rejects_garbage(self, config_file):
        result = self.invoke(config_file, 'parse-template', 'zz')

        assert result.exit_code == 1

    def test_fund(self, config_file, utxo_file):
        result = self.invoke(config_file, 'fund', UNFUNDED_TEMPLATE_HEX, utxo_file,
                             '--change-address', TESTNET_ADDRESS, '--change-amount', '49757')

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        tx = Transaction.from_hex(data['funded_tx_hex'])
        assert tx.txid == data['txid']
        assert len(tx.inputs) == 3
        assert tx.outputs[1].value == 49757
        assert tx.outputs[1].script.hex() == P2WPKH_SCRIPT

    def test_fund_uses_configured_change_address(self, tmp_path, utxo_file):
        path = tmp_path / "config.yml"
        path.write_text(f"network: testnet\nchange_address: {TESTNET_ADDRESS}\n")

        result = self.invoke(str(path), 'fund', UNFUNDED_TEMPLATE_HEX, utxo_file,
                             '--change-amount', '1000')

        assert result.exit_code == 0, result.output
        tx = Transaction.from_hex(json.loads(result.output)['funded_tx_hex'])
        assert tx.outputs[1].script.hex() == P2WPKH_SCRIPT

    def test_fund_without_change_address(self, config_file, utxo_file):
        result = self.invoke(config_file, 'fund', UNFUNDED_TEMPLATE_HEX, utxo_file)

        assert result.exit_code == 2
        assert 'No change address' in result.output

    def test_control_block(self, config_file):
        result = self.invoke(config_file, 'control-block', INTERNAL_KEY, PAYOUT_LEAF_SCRIPT)

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        expected = create_tap_script_control_block(bytes.fromhex(INTERNAL_KEY),
                                                   bytes.fromhex(PAYOUT_LEAF_SCRIPT))
        assert data['control_block'] == expected.hex()
        assert data['control_block'].endswith(INTERNAL_KEY)
        assert len(data['leaf_hash']) == 64

    def test_control_block_bad_key(self, config_file):
        result = self.invoke(config_file, 'control-block', 'abcd', PAYOUT_LEAF_SCRIPT)

        assert result.exit_code == 1
        assert 'Internal key must be 32 bytes' in result.output

    def test_extract_signature(self, config_file):
        builder = BasePSBTBuilder()
        builder.add_input("ab" * 32, 0,
                          witness_utxo=TxOut(value=100000, script=bytes.fromhex(P2TR_SCRIPT)))
        builder.add_output(bytes.fromhex(P2TR_SCRIPT), 90000)
        psbt_hex = add_tap_script_sig(builder.to_hex(), bytes.fromhex(DEPOSITOR_PUBKEY))

        result = self.invoke(config_file, 'extract-signature', psbt_hex, DEPOSITOR_PUBKEY)

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {'signature': FAKE_SIGNATURE.hex()}

    def test_split(self, config_file, utxo_file):
        result = self.invoke(config_file, 'split', utxo_file,
                             '--output', f'{TESTNET_ADDRESS}:50000',
                             '--output', f'{TESTNET_ADDRESS}:60000')

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [output['value'] for output in data['outputs']] == [50000, 60000]
        assert all(output['txid'] == data['txid'] for output in data['outputs'])

    def test_split_bad_output_spec(self, config_file, utxo_file):
        result = self.invoke(config_file, 'split', utxo_file, '--output', 'no-amount')

        assert result.exit_code == 2
        assert 'ADDRESS:AMOUNT' in result.output

    def test_missing_config_file(self, tmp_path):
        result = self.runner.invoke(cli, ['-c', str(tmp_path / 'missing.yml'),
                                          'parse-template', UNFUNDED_TEMPLATE_HEX])

        assert result.exit_code == 1
        assert 'Config file not found' in result.output


class TestConfigCommands:
    """Test config subcommands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_config_show(self, config_file):
        result = self.runner.invoke(cli, ['-c', config_file, '-o', 'json', 'config', 'show'])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data['network'] == 'testnet'
        assert data['sources'][0] == 'defaults'
        assert data['sources'][-1].startswith('file:')

    def test_config_show_with_profile(self, config_file):
        result = self.runner.invoke(cli, ['-c', config_file, '--profile', 'mainnet',
                                          '-o', 'yaml', 'config', 'show'])

        assert result.exit_code == 0, result.output
        # The file layer wins over the profile
        assert 'network: testnet' in result.output
        assert 'profile:mainnet' in result.output

    def test_config_validate(self, config_file):
        result = self.runner.invoke(cli, ['-c', config_file, 'config', 'validate'])

        assert result.exit_code == 0
        assert 'Configuration is valid' in result.output

    def test_config_validate_reports_problems(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("network: moonnet\nfee_rate: -1\n")

        result = self.runner.invoke(cli, ['-c', str(path), 'config', 'validate'])

        assert result.exit_code == 1
        assert 'Configuration has 2 problem(s)' in result.output
