"""Shared helpers for the plugin commands: shell execution, config and prompts."""

import configparser
import datetime
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import click

SF_NAMESPACE_URI = 'http://soap.sforce.com/2006/04/metadata'
DEFAULT_METADATA_DIRECTORY = 'force-app/main/default'
DEFAULT_CONFIG_FILENAME = 'config.ini'
USE_SHELL = os.name == 'nt'


class NavigationInterrupt(Exception):
    """Raised when the user cancels an interactive prompt."""


def prompt_with_navigation(prompt):
    """Execute a questionary prompt and translate cancellations into navigation."""

    try:
        answer = prompt.ask()
    except KeyboardInterrupt:
        raise NavigationInterrupt() from None

    if answer is None:
        raise NavigationInterrupt()

    return answer


@dataclass
class CommandResult:
    """Outcome of executing a subprocess command."""

    success: bool
    returncode: int | None
    stdout: str | None
    duration_seconds: float
    stderr: str | None = None


@dataclass
class OrgConfig:
    """Configuration describing a single Salesforce org target."""

    name: str
    persistent_alias: str


@dataclass
class ConfigSettings:
    """Defaults applied to command flags that were not given explicitly."""

    target_org: str | None = None
    metadata_directory: str = DEFAULT_METADATA_DIRECTORY
    active_org_name: str | None = None
    available_orgs: list[OrgConfig] = field(default_factory=list)


def ensure_list(value) -> list:
    """Normalise a missing, scalar or list value into a list."""

    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def run_command(command: list[str]) -> CommandResult:
    """Run a command and capture its output.

    The argument list is passed straight to the process. A shell is only used on
    Windows, where ``sf`` is installed as a ``.cmd`` shim.
    """

    start = datetime.datetime.now()
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            encoding='utf-8',
            errors='replace',
            shell=USE_SHELL,
            check=False,
        )
    except OSError as e:
        duration = (datetime.datetime.now() - start).total_seconds()
        return CommandResult(False, None, None, duration, str(e))

    duration = (datetime.datetime.now() - start).total_seconds()
    return CommandResult(
        result.returncode == 0,
        result.returncode,
        result.stdout,
        duration,
        result.stderr,
    )


def read_config(config_path: Path) -> ConfigSettings:
    """Read INI defaults for the target org and metadata directory.

    A missing file yields the built-in defaults. When several ``[Org <name>]``
    sections exist, ``SalesforceOrgs.active_org`` selects the one to use.
    """

    settings = ConfigSettings()
    if config_path is None or not Path(config_path).is_file():
        return settings

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding='utf-8')

    for section in parser.sections():
        if not section.startswith('Org '):
            continue
        settings.available_orgs.append(
            OrgConfig(
                name=section[4:].strip() or 'default',
                persistent_alias=parser.get(section, 'persistent_alias', fallback='').strip(),
            )
        )

    active_org_name = parser.get('SalesforceOrgs', 'active_org', fallback='').strip()
    active_org: OrgConfig | None = None
    if active_org_name:
        active_org = next(
            (org for org in settings.available_orgs if org.name == active_org_name), None
        )
        if active_org is None:
            available_names = ', '.join(org.name for org in settings.available_orgs) or 'none found'
            raise click.ClickException(
                f"Active org '{active_org_name}' was not found. Available orgs: {available_names}."
            )
    elif len(settings.available_orgs) == 1:
        active_org = settings.available_orgs[0]
    elif len(settings.available_orgs) > 1:
        raise click.ClickException(
            "Multiple org configurations detected. Set 'SalesforceOrgs.active_org' to choose which org is active."
        )

    if active_org is not None:
        settings.active_org_name = active_org.name
        settings.target_org = active_org.persistent_alias or None

    settings.metadata_directory = (
        parser.get('ToolOptions', 'metadata_directory', fallback='').strip()
        or DEFAULT_METADATA_DIRECTORY
    )
    return settings
