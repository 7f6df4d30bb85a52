"""
Tests for layered CLI configuration.
"""

import json

import pytest

from cli.config import DEFAULT_CONFIG, ConfigurationError, ConfigurationManager

from conftest import MAINNET_ADDRESS, TESTNET_ADDRESS


class TestConfigurationManager:
    """Test configuration layering and lookups."""

    def test_defaults(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("")
        manager = ConfigurationManager(str(config_file), environ={})

        config = manager.load()

        assert config['network'] == DEFAULT_CONFIG['network']
        assert config['fee_rate'] == 2.0
        assert manager.get('logging.level') == 'WARNING'
        assert manager.get('logging.missing', 'fallback') == 'fallback'

    def test_defaults_not_mutated(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("")
        manager = ConfigurationManager(str(config_file), environ={})

        manager.set('logging.level', 'DEBUG')

        assert DEFAULT_CONFIG['logging']['level'] == 'WARNING'
        assert manager.get('logging.level') == 'DEBUG'

    def test_yaml_file(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("network: testnet\nlogging:\n  level: INFO\n")
        manager = ConfigurationManager(str(config_file), environ={})

        assert manager.get('network') == 'testnet'
        assert manager.get('logging.level') == 'INFO'
        assert manager.get('fee_rate') == 2.0
        assert manager.get_sources() == ['defaults', f'file:{config_file}']

    def test_json_file(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({'fee_rate': 5, 'output_format': 'json'}))
        manager = ConfigurationManager(str(config_file), environ={})

        assert manager.get('fee_rate') == 5
        assert manager.get('output_format') == 'json'

    def test_profile_then_file_then_environment(self, tmp_path):
        """Test later layers override earlier ones."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("fee_rate: 3.5\n")
        environ = {
            'VAULTTX_LOGGING__LEVEL': 'error',
            'VAULTTX_CHANGE_ADDRESS': TESTNET_ADDRESS,
            'UNRELATED': 'ignored',
        }
        manager = ConfigurationManager(str(config_file), profile='regtest', environ=environ)

        config = manager.load()

        assert config['network'] == 'regtest'
        assert config['fee_rate'] == 3.5
        assert config['logging']['level'] == 'error'
        assert config['change_address'] == TESTNET_ADDRESS
        assert 'unrelated' not in config
        assert manager.get_sources() == [
            'defaults', 'profile:regtest', f'file:{config_file}', 'environment'
        ]

    def test_environment_value_types(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("")
        environ = {
            'VAULTTX_FEE_RATE': '7',
            'VAULTTX_RATIO': '0.5',
            'VAULTTX_ENABLED': 'yes',
            'VAULTTX_DISABLED': 'false',
            'VAULTTX_CHANGE_ADDRESS': 'none',
        }
        manager = ConfigurationManager(str(config_file), environ=environ)

        assert manager.get('fee_rate') == 7
        assert manager.get('ratio') == 0.5
        assert manager.get('enabled') is True
        assert manager.get('disabled') is False
        assert manager.get('change_address') is None

    def test_reset_reloads(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("network: testnet\n")
        manager = ConfigurationManager(str(config_file), environ={})
        assert manager.get('network') == 'testnet'

        config_file.write_text("network: mainnet\n")
        assert manager.get('network') == 'testnet'

        manager.reset()
        assert manager.get('network') == 'mainnet'

    def test_unknown_profile(self, tmp_path):
        manager = ConfigurationManager(str(tmp_path / "missing.yml"), profile='moonnet', environ={})

        with pytest.raises(ConfigurationError, match="Unknown profile: moonnet"):
            manager.load()

    def test_missing_file(self, tmp_path):
        manager = ConfigurationManager(str(tmp_path / "missing.yml"), environ={})

        with pytest.raises(ConfigurationError, match="Config file not found"):
            manager.load()

    def test_malformed_yaml(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("network: [unclosed\n")
        manager = ConfigurationManager(str(config_file), environ={})

        with pytest.raises(ConfigurationError, match="Failed to load config"):
            manager.load()

    def test_non_mapping_file(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("[1, 2]")
        manager = ConfigurationManager(str(config_file), environ={})

        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            manager.load()


class TestConfigurationValidation:
    """Test configuration validation."""

    def write_config(self, tmp_path, text):
        config_file = tmp_path / "config.yml"
        config_file.write_text(text)
        return ConfigurationManager(str(config_file), environ={})

    def test_valid(self, tmp_path):
        manager = self.write_config(tmp_path, f"network: testnet\nchange_address: {TESTNET_ADDRESS}\n")

        assert manager.validate() == []

    def test_profiles_are_valid(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("")

        for profile in ('mainnet', 'testnet', 'signet', 'regtest'):
            manager = ConfigurationManager(str(config_file), profile=profile, environ={})
            assert manager.validate() == []

    def test_collects_every_problem(self, tmp_path):
        manager = self.write_config(
            tmp_path,
            "network: moonnet\nfee_rate: 0\noutput_format: xml\nlogging:\n  level: LOUD\n",
        )

        errors = manager.validate()

        assert errors == [
            "Invalid network: moonnet",
            "Fee rate must be a positive number, got 0",
            "Invalid output format: xml",
            "Invalid logging level: LOUD",
        ]

    def test_boolean_fee_rate(self, tmp_path):
        manager = self.write_config(tmp_path, "fee_rate: true\n")

        assert manager.validate() == ["Fee rate must be a positive number, got True"]

    def test_change_address_on_wrong_network(self, tmp_path):
        manager = self.write_config(tmp_path, f"network: testnet\nchange_address: {MAINNET_ADDRESS}\n")

        errors = manager.validate()

        assert len(errors) == 1
        assert errors[0].startswith("Invalid change address")
