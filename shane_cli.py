"""Command-line entry point for the permission set and user commands."""

from pathlib import Path

import click

from permset_create import create
from plugin_utils import DEFAULT_CONFIG_FILENAME, read_config
from user_loginurl import loginurl


@click.group()
@click.option('--config', 'config_path', default=DEFAULT_CONFIG_FILENAME, show_default=True,
              type=click.Path(dir_okay=False, path_type=Path),
              help='INI file supplying the default target org and metadata directory.')
@click.pass_context
def cli(ctx, config_path):
    """Salesforce metadata helpers."""
    ctx.obj = read_config(config_path)


@cli.group()
def permset():
    """Build permission sets from local metadata."""


@cli.group()
def user():
    """User and session helpers."""


permset.add_command(create)
user.add_command(loginurl)


def main():
    cli()


if __name__ == '__main__':
    main()
