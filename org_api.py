"""Org lookups performed through the Salesforce CLI."""

import json
import re
from dataclasses import dataclass

import click

from plugin_utils import CommandResult, ensure_list, run_command

ANSI_ESCAPE = re.compile(r'\x1b\[[0-9;]*[A-Za-z]')


class OrgCommandError(click.ClickException):
    """The sf CLI call failed or returned something unreadable."""


class DescribeError(OrgCommandError):
    """Describe failed for a single object."""

    def __init__(self, object_name: str, reason: str = ''):
        self.object_name = object_name
        message = f"Unable to get describe for object {object_name}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


@dataclass
class FieldDescribe:
    name: str
    createable: bool = False
    updateable: bool = False
    permissionable: bool = False

    @classmethod
    def from_record(cls, record: dict) -> 'FieldDescribe':
        return cls(
            name=record['name'],
            createable=bool(record.get('createable')),
            updateable=bool(record.get('updateable')),
            permissionable=bool(record.get('permissionable')),
        )


def strip_color(text: str | None) -> str:
    return ANSI_ESCAPE.sub('', text or '')


def parse_json_output(result: CommandResult) -> dict | None:
    """Return the JSON payload from stdout, falling back to stderr."""

    for stream in (result.stdout, result.stderr):
        cleaned = strip_color(stream).strip()
        if not cleaned:
            continue
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            continue
    return None


def _error_message(payload: dict | None, result: CommandResult) -> str:
    if payload and payload.get('message'):
        return payload['message']
    if result.returncode is not None:
        return f"sf exited with code {result.returncode}"
    return strip_color(result.stderr).strip() or 'sf could not be started'


def describe_sobject(object_name: str, target_org: str) -> dict[str, FieldDescribe]:
    """Describe an sObject and return its fields keyed by API name."""

    result = run_command(
        ['sf', 'sobject', 'describe', '--sobject', object_name, '--target-org', target_org, '--json']
    )
    payload = parse_json_output(result)
    if not result.success or not payload or payload.get('status', 0) != 0:
        raise DescribeError(object_name, _error_message(payload, result))

    fields = ensure_list((payload.get('result') or {}).get('fields'))
    return {record['name']: FieldDescribe.from_record(record) for record in fields}


def display_org(target_org: str) -> dict:
    """Return the ``result`` block of ``sf org display`` for the org."""

    result = run_command(
        ['sf', 'org', 'display', '--json', '--target-org', target_org]
    )
    payload = parse_json_output(result)
    if not payload or payload.get('status', 0) != 0 or 'result' not in payload:
        raise OrgCommandError(
            f"Unable to display org {target_org}: {_error_message(payload, result)}"
        )
    return payload['result']
