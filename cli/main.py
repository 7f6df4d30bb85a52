#!/usr/bin/env python3
"""
Vault Transaction Builder - Command Line Interface

Offline tooling for vault transactions: UTXO selection, template funding,
control blocks, signature extraction and split transactions.
"""

import functools
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import click
import yaml

from crypto.exceptions import CryptoError
from crypto.taproot import create_tap_script_control_block, tap_leaf_hash
from psbt.exceptions import VaultTransactionError
from psbt.funding import fund_pegin_transaction
from psbt.signature import extract_payout_signature
from psbt.split import SplitOutputSpec, create_split_transaction
from psbt.template import parse_unfunded_template
from psbt.transaction import Transaction
from utxo.models import UTXO
from utxo.selection import select_utxos_for_pegin
from vault.pubkeys import hex_to_bytes

from cli import __version__
from cli.config import ConfigurationManager

# Loggers of the packages whose records reach the console
PACKAGE_LOGGERS = ('cli', 'crypto', 'psbt', 'utxo', 'vault')

_console_handler: Optional[logging.Handler] = None


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.profile: Optional[str] = None
        self.output_format: str = "table"
        self.verbose: int = 0
        self.config_manager: Optional[ConfigurationManager] = None
        self.logger = logging.getLogger('cli')

    def load_config(self):
        """Load layered configuration for this invocation."""
        self.config_manager = ConfigurationManager(self.config_file, self.profile)
        self.config_manager.load()

    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value with fallback to default."""
        return self.config_manager.get(key, default)

    def setup_logging(self):
        """Configure console logging from verbosity, else from logging.level."""
        global _console_handler

        if self.verbose >= 2:
            level = logging.DEBUG
        elif self.verbose == 1:
            level = logging.INFO
        else:
            level = getattr(logging, str(self.get_config('logging.level', 'WARNING')).upper(),
                            logging.WARNING)

        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

        for name in PACKAGE_LOGGERS:
            logger = logging.getLogger(name)
            if _console_handler is not None:
                logger.removeHandler(_console_handler)
            logger.addHandler(handler)
            logger.setLevel(level)

        _console_handler = handler

    def output(self, data: Any, format_override: Optional[str] = None):
        """Output data in the selected format."""
        format_type = format_override or self.output_format

        if format_type == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        elif format_type == "yaml":
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)
        else:
            self._output_table(data)

    def _output_table(self, data: Any):
        """Output data in table format."""
        if isinstance(data, dict):
            for key, value in data.items():
                if isinstance(value, list) and value and isinstance(value[0], dict):
                    click.echo(f"{key}:")
                    self._output_table(value)
                else:
                    click.echo(f"{key:20} {value}")
        elif isinstance(data, list) and data:
            if isinstance(data[0], dict):
                headers = list(data[0].keys())
                click.echo(" | ".join(f"{h:15}" for h in headers))
                click.echo("-" * (len(headers) * 18))
                for item in data:
                    click.echo(" | ".join(f"{str(item.get(h, '')):15}" for h in headers))
            else:
                for item in data:
                    click.echo(item)
        else:
            click.echo(str(data))


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Turn library errors into click errors with a readable message."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (VaultTransactionError, CryptoError) as e:
            ctx = click.get_current_context().find_object(CLIContext)
            if ctx is not None and ctx.verbose >= 2:
                ctx.logger.exception("Command failed")
            raise click.ClickException(str(e))

    return wrapper


def load_utxo_file(path: str) -> List[UTXO]:
    """
    Load UTXOs from a JSON file.

    The file holds either a list of UTXO records or an object with a
    ``utxos`` list.
    """
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in {path}: {e}")

    if isinstance(data, dict):
        data = data.get('utxos', [])
    if not isinstance(data, list):
        raise click.ClickException(f"{path} must contain a list of UTXOs")

    try:
        return [UTXO.from_dict(record) for record in data]
    except (KeyError, TypeError, ValueError) as e:
        raise click.ClickException(f"Invalid UTXO record in {path}: {e}")


def parse_split_output(value: str) -> SplitOutputSpec:
    """Parse an ADDRESS:AMOUNT pair."""
    address, sep, amount = value.rpartition(':')
    if not sep or not address:
        raise click.BadParameter(f"Expected ADDRESS:AMOUNT, got {value}", param_hint='--output')
    try:
        return SplitOutputSpec(amount=int(amount), address=address)
    except ValueError:
        raise click.BadParameter(f"Amount must be an integer, got {amount}", param_hint='--output')


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c', type=click.Path(dir_okay=False),
              help='Path to configuration file')
@click.option('--output-format', '-o',
              type=click.Choice(['table', 'json', 'yaml']),
              default=None,
              help='Output format (default from configuration)')
@click.option('--verbose', '-v', count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.option('--profile', type=click.Choice(['mainnet', 'testnet', 'signet', 'regtest']),
              help='Network profile to apply')
@click.version_option(__version__, prog_name='vaulttx')
@pass_context
@handle_cli_error
def cli(ctx: CLIContext, config_file: Optional[str], output_format: Optional[str],
        verbose: int, profile: Optional[str]):
    """
    Vault transaction builder.

    Examples:
        vaulttx select-utxos utxos.json --amount 100000 --fee-rate 2
        vaulttx control-block <internal-key> <script-hex>
        vaulttx -o json split utxos.json --output tb1q...:50000
    """
    ctx.config_file = config_file
    ctx.profile = profile
    ctx.verbose = verbose

    ctx.load_config()
    ctx.output_format = output_format or ctx.get_config('output_format', 'table')
    ctx.setup_logging()

    ctx.logger.debug(f"Configuration sources: {', '.join(ctx.config_manager.get_sources())}")


@cli.command('select-utxos')
@click.argument('utxo_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--amount', type=int, required=True, help='Peg-in amount in satoshis')
@click.option('--fee-rate', type=float, default=None, help='Fee rate in sat/vbyte')
@pass_context
@handle_cli_error
def select_utxos(ctx: CLIContext, utxo_file: str, amount: int, fee_rate: Optional[float]):
    """Select UTXOs to fund a peg-in of AMOUNT satoshis."""
    utxos = load_utxo_file(utxo_file)
    fee_rate = fee_rate if fee_rate is not None else ctx.get_config('fee_rate')

    result = select_utxos_for_pegin(utxos, amount, fee_rate)
    ctx.output(result.to_dict())


@cli.command('parse-template')
@click.argument('tx_hex')
@pass_context
@handle_cli_error
def parse_template(ctx: CLIContext, tx_hex: str):
    """Decode an unfunded (0-input) transaction template."""
    template = parse_unfunded_template(tx_hex)
    ctx.output({
        'version': template.version,
        'locktime': template.locktime,
        'outputs': [
            {'value': output.value, 'script_pubkey': output.script.hex()}
            for output in template.outputs
        ],
    })


@cli.command('fund')
@click.argument('template_hex')
@click.argument('utxo_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--change-address', default=None, help='Change address (default from configuration)')
@click.option('--change-amount', type=int, default=0, help='Change amount in satoshis')
@pass_context
@handle_cli_error
def fund(ctx: CLIContext, template_hex: str, utxo_file: str,
         change_address: Optional[str], change_amount: int):
    """Add UTXO inputs and change to an unfunded template."""
    utxos = load_utxo_file(utxo_file)
    change_address = change_address or ctx.get_config('change_address')
    if not change_address:
        raise click.UsageError("No change address given and none configured")

    funded_tx_hex = fund_pegin_transaction(
        template_hex, utxos, change_address, change_amount, ctx.get_config('network')
    )
    ctx.output({
        'funded_tx_hex': funded_tx_hex,
        'txid': Transaction.from_hex(funded_tx_hex).txid,
    })


@cli.command('control-block')
@click.argument('internal_key')
@click.argument('script_hex')
@pass_context
@handle_cli_error
def control_block(ctx: CLIContext, internal_key: str, script_hex: str):
    """Compute the control block for a single-leaf script spend."""
    script = hex_to_bytes(script_hex)
    block = create_tap_script_control_block(hex_to_bytes(internal_key), script)
    ctx.output({
        'control_block': block.hex(),
        'leaf_hash': tap_leaf_hash(script).hex(),
    })


@cli.command('extract-signature')
@click.argument('psbt_hex')
@click.argument('depositor_pubkey')
@pass_context
@handle_cli_error
def extract_signature(ctx: CLIContext, psbt_hex: str, depositor_pubkey: str):
    """Extract the depositor signature from a signed payout PSBT."""
    ctx.output({'signature': extract_payout_signature(psbt_hex, depositor_pubkey)})


@cli.command('split')
@click.argument('utxo_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', 'outputs', multiple=True, required=True, metavar='ADDRESS:AMOUNT',
              help='Split output, repeatable')
@pass_context
@handle_cli_error
def split(ctx: CLIContext, utxo_file: str, outputs: List[str]):
    """Split UTXOs into several outputs."""
    utxos = load_utxo_file(utxo_file)
    specs = [parse_split_output(value) for value in outputs]

    split_tx = create_split_transaction(utxos, specs, ctx.get_config('network'))
    ctx.output(split_tx.to_dict())


@cli.group()
@pass_context
def config(ctx: CLIContext):
    """Configuration inspection commands."""
    ctx.logger.debug("Config command group invoked")


@config.command('show')
@pass_context
def show_config(ctx: CLIContext):
    """Show the merged configuration and where it came from."""
    data: Dict[str, Any] = dict(ctx.config_manager.load())
    data['sources'] = ctx.config_manager.get_sources()
    ctx.output(data)


@config.command('validate')
@pass_context
def validate_config(ctx: CLIContext):
    """Validate the merged configuration."""
    errors = ctx.config_manager.validate()
    if errors:
        for error in errors:
            click.echo(f"  - {error}", err=True)
        raise click.ClickException(f"Configuration has {len(errors)} problem(s)")

    click.echo("Configuration is valid")


if __name__ == '__main__':
    cli()
