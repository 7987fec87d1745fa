#!/usr/bin/env python3
"""
UniChat Profile - Command Line Interface

A CLI for deploying the profile registry proxy, minting, updating and burning
profiles, reading them back, and upgrading the installed logic.
"""

import json
import logging
import sys
import traceback
from functools import wraps
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from pydantic import BaseModel

from proxy.core import UpgradeableProxy
from proxy.exceptions import ProfileRegistryError
from proxy.implementation import ZERO_ADDRESS
from proxy.storage import StorageError
from registry.deployment import deploy_profile_registry, open_profile_registry
from registry.logic import default_catalog

from cli import __version__
from cli.config import ConfigurationManager


LOGGED_PACKAGES = ('uchp-cli', 'proxy', 'registry')


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_manager: Optional[ConfigurationManager] = None
        self.output_format: str = "table"
        self.verbose: int = 0
        self.storage_dir: Optional[str] = None
        self.logger: logging.Logger = logging.getLogger('uchp-cli')

    def setup_logging(self):
        """Configure logging based on verbosity level."""
        log_levels = {
            0: logging.WARNING,
            1: logging.INFO,
            2: logging.DEBUG
        }
        level = log_levels.get(min(self.verbose, 2), logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        for name in LOGGED_PACKAGES:
            logger = logging.getLogger(name)
            logger.setLevel(level)
            if not logger.handlers:
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(formatter)
                logger.addHandler(handler)

    def get_config(self, key_path: str, default: Any = None) -> Any:
        return self.config_manager.get(key_path, default)

    def storage_options(self) -> Dict[str, Any]:
        return {
            'compressed': self.get_config('storage.compressed', False),
            'backup_count': self.get_config('storage.backup_count', 5),
            'lock_timeout': self.get_config('storage.lock_timeout', 30.0),
        }

    def resolve_storage_dir(self) -> str:
        return self.storage_dir or self.get_config('storage.dir')

    def resolve_account(self, account: Optional[str]) -> str:
        """Use the explicit account or fall back to the configured one."""
        account = account or self.get_config('cli.account')
        if not account:
            raise click.UsageError("No account given; pass --account or set cli.account")
        if not isinstance(account, str):
            raise click.UsageError(f"Configured cli.account is not an address string: {account!r}")
        return account

    def open_proxy(self) -> UpgradeableProxy:
        storage_dir = self.resolve_storage_dir()
        if not (Path(storage_dir) / 'proxy.json').exists():
            raise click.UsageError(f"No deployment found in {storage_dir}; run 'deploy' first")
        return open_profile_registry(storage_dir, **self.storage_options())

    def output(self, data: Any):
        """Output data in the selected format."""
        data = _to_data(data)

        if self.output_format == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        elif self.output_format == "yaml":
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        else:
            self._output_table(data)

    def _output_table(self, data: Any):
        """Output data in table format."""
        if isinstance(data, dict):
            for key, value in data.items():
                click.echo(f"{key:20} {value}")
        elif isinstance(data, list) and data:
            if isinstance(data[0], dict):
                headers = list(data[0].keys())
                click.echo(" | ".join(f"{h:15}" for h in headers))
                click.echo("-" * (len(headers) * 17))
                for item in data:
                    values = [str(item.get(h, ""))[:15] for h in headers]
                    click.echo(" | ".join(f"{v:15}" for v in values))
            else:
                for item in data:
                    click.echo(item)
        else:
            click.echo(str(data))


def _to_data(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_data(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_data(v) for k, v in value.items()}
    return value


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Report call failures as messages with a non-zero exit code."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (ProfileRegistryError, StorageError, ValueError, OSError) as e:
            ctx = click.get_current_context().find_object(CLIContext)

            click.echo(f"Error: {type(e).__name__}: {e}", err=True)
            if ctx and ctx.verbose >= 2:
                click.echo(traceback.format_exc(), err=True)
            else:
                click.echo("Use -vv for detailed error information.", err=True)

            sys.exit(1)

    return wrapper


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c', help='Path to configuration file')
@click.option('--profile', '-p', type=click.Choice(['production', 'development']),
              help='Configuration profile')
@click.option('--output-format', '-o', type=click.Choice(['table', 'json', 'yaml']),
              help='Output format')
@click.option('--storage-dir', '-d', help='Registry storage directory')
@click.option('--verbose', '-v', count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.version_option(__version__, prog_name='uchp')
@pass_context
def cli(ctx: CLIContext, config_file: Optional[str], profile: Optional[str],
        output_format: Optional[str], storage_dir: Optional[str], verbose: int):
    """
    UniChat Profile registry command line interface.

    Examples:
        uchp deploy --account 0xabc...
        uchp mint --account 0xabc... --name Huahua --token-uri ipfs://Qm...
        uchp update 1 --account 0xabc... --description "new description"
        uchp show 1
    """
    ctx.verbose = verbose
    ctx.setup_logging()

    ctx.config_manager = ConfigurationManager(config_file, profile)
    try:
        ctx.config_manager.load()
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.UsageError(f"Failed to load configuration: {e}")

    ctx.output_format = output_format or ctx.get_config('cli.output_format', 'table')
    ctx.storage_dir = storage_dir

    ctx.logger.debug(f"CLI initialized from {ctx.config_manager.get_sources()}")


@cli.command()
@click.option('--account', '-a', help='Deploying account')
@click.option('--name', help='Collection name')
@click.option('--symbol', help='Collection symbol')
@click.option('--default-avatar', help='Default avatar CID')
@click.option('--owner', help='Privileged owner (defaults to the deploying account)')
@click.option('--implementation', help='Logic address to install')
@pass_context
@handle_cli_error
def deploy(ctx: CLIContext, account: Optional[str], name: Optional[str], symbol: Optional[str],
           default_avatar: Optional[str], owner: Optional[str], implementation: Optional[str]):
    """Deploy the registry proxy and run its initializer."""
    proxy = deploy_profile_registry(
        ctx.resolve_storage_dir(),
        deployer=ctx.resolve_account(account),
        default_avatar_cid=default_avatar or ctx.get_config('token.default_avatar_cid'),
        name=name or ctx.get_config('token.name'),
        symbol=symbol or ctx.get_config('token.symbol'),
        initial_owner=owner,
        implementation=implementation,
        **ctx.storage_options()
    )
    ctx.output(proxy.info())


@cli.command()
@click.option('--account', '-a', help='Minting account')
@click.option('--name', default='', help='Display name')
@click.option('--description', default='', help='Profile description')
@click.option('--default-avatar/--custom-avatar', default=True,
              help='Track the registry default avatar')
@click.option('--avatar', default='', help='Avatar CID when using a custom avatar')
@click.option('--token-uri', default='', help='Metadata URI')
@pass_context
@handle_cli_error
def mint(ctx: CLIContext, account: Optional[str], name: str, description: str,
         default_avatar: bool, avatar: str, token_uri: str):
    """Mint a profile for the account."""
    client = ctx.open_proxy().connect(ctx.resolve_account(account))
    token_id = client.mint_profile(name, description, default_avatar, avatar, token_uri)
    ctx.output(client.get_profile(token_id))


@cli.command()
@click.argument('token_id', type=int)
@click.option('--account', '-a', help='Profile holder')
@click.option('--name', default='', help='New name (empty leaves it unchanged)')
@click.option('--description', default='', help='New description (empty leaves it unchanged)')
@click.option('--avatar', default='', help='New avatar CID (empty leaves it unchanged)')
@click.option('--token-uri', default='', help='New metadata URI (empty leaves it unchanged)')
@pass_context
@handle_cli_error
def update(ctx: CLIContext, token_id: int, account: Optional[str], name: str,
           description: str, avatar: str, token_uri: str):
    """Update profile fields."""
    client = ctx.open_proxy().connect(ctx.resolve_account(account))
    client.update_profile_legacy(token_id, name, description, avatar, token_uri)
    ctx.output(client.get_profile(token_id))


@cli.command()
@click.argument('token_id', type=int)
@click.option('--account', '-a', help='Profile holder')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation')
@pass_context
@handle_cli_error
def burn(ctx: CLIContext, token_id: int, account: Optional[str], yes: bool):
    """Burn a profile. Its token ID is never reused."""
    if not yes and ctx.get_config('cli.confirm_destructive', True):
        click.confirm(f"Burn profile {token_id}?", abort=True)

    client = ctx.open_proxy().connect(ctx.resolve_account(account))
    client.burn_profile(token_id)
    ctx.output({'token_id': token_id, 'burned': True})


@cli.command()
@click.argument('token_id', type=int)
@pass_context
@handle_cli_error
def show(ctx: CLIContext, token_id: int):
    """Show a profile."""
    proxy = ctx.open_proxy()
    ctx.output(proxy.call(ctx.get_config('cli.account') or ZERO_ADDRESS, 'get_profile', token_id))


@cli.command()
@click.argument('address')
@pass_context
@handle_cli_error
def has(ctx: CLIContext, address: str):
    """Check whether an address holds a profile."""
    proxy = ctx.open_proxy()
    result = proxy.call(ctx.get_config('cli.account') or ZERO_ADDRESS, 'has_profile', address)
    ctx.output({'address': address.lower(), 'has_profile': result})


@cli.command('set-default-avatar')
@click.argument('cid')
@click.option('--account', '-a', help='Registry owner')
@pass_context
@handle_cli_error
def set_default_avatar(ctx: CLIContext, cid: str, account: Optional[str]):
    """Change the default avatar (owner only)."""
    client = ctx.open_proxy().connect(ctx.resolve_account(account))
    client.set_default_avatar_cid(cid)
    ctx.output({'default_avatar_cid': client.default_avatar_cid()})


@cli.command()
@click.argument('implementation')
@click.option('--account', '-a', help='Registry owner')
@pass_context
@handle_cli_error
def upgrade(ctx: CLIContext, implementation: str, account: Optional[str]):
    """Install a new logic implementation (owner only)."""
    proxy = ctx.open_proxy()
    proxy.connect(ctx.resolve_account(account)).upgrade_to(implementation)
    ctx.output(proxy.info())


@cli.command()
@click.option('--name', help='Only show events with this name')
@pass_context
@handle_cli_error
def events(ctx: CLIContext, name: Optional[str]):
    """List emitted events."""
    records = ctx.open_proxy().events(name)
    ctx.output([
        {
            'sequence': r.sequence,
            'name': r.name,
            'sender': r.sender,
            'args': json.dumps(r.args) if ctx.output_format == 'table' else r.args,
        }
        for r in records
    ])


@cli.command()
@pass_context
@handle_cli_error
def info(ctx: CLIContext):
    """Show deployment information."""
    proxy = ctx.open_proxy()
    details = proxy.info()
    reader = ctx.get_config('cli.account') or ZERO_ADDRESS
    details.update({
        'name': proxy.call(reader, 'name'),
        'symbol': proxy.call(reader, 'symbol'),
        'owner': proxy.call(reader, 'owner'),
        'default_avatar_cid': proxy.call(reader, 'default_avatar_cid'),
        'total_supply': proxy.call(reader, 'total_supply'),
        'next_token_id': proxy.call(reader, 'next_token_id'),
    })
    ctx.output(details)


@cli.command()
@pass_context
def implementations(ctx: CLIContext):
    """List known logic implementations."""
    ctx.output([
        {k: v for k, v in item.items() if k != 'functions'}
        for item in default_catalog().list_implementations()
    ])


def main():
    cli(prog_name='uchp')


if __name__ == '__main__':
    main()
