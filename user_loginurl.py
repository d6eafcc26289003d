"""Generate a long-lived, shareable login URL for an org."""

import json
from urllib.parse import quote

import click

from org_api import OrgCommandError, display_org

# Characters JavaScript's encodeURIComponent leaves unescaped.
URI_COMPONENT_SAFE = "-_.!~*'()"


def encode_uri_component(value: str) -> str:
    return quote(value, safe=URI_COMPONENT_SAFE)


def build_login_url(login_url: str, username: str, password: str, start_url: str | None = None) -> str:
    url = (
        f"{login_url.rstrip('/')}/login.jsp"
        f"?un={encode_uri_component(username)}&pw={encode_uri_component(password)}"
    )
    if start_url:
        url = f"{url}&startURL={encode_uri_component(start_url)}"
    return url


def login_url_for_org(target_org: str, start_url: str | None = None) -> str:
    """Look up the org's credentials with ``sf org display`` and build the URL."""

    org_info = display_org(target_org)
    password = org_info.get('password')
    if not password:
        raise OrgCommandError(
            'No password is set...run sf org generate password first'
        )

    username = org_info.get('username') or target_org
    login_url = org_info.get('loginUrl') or org_info.get('instanceUrl')
    if not login_url:
        raise OrgCommandError(f"No login or instance URL found for {target_org}")
    return build_login_url(login_url, username, password, start_url)


@click.command('loginurl')
@click.option('-p', '--starturl', default=None, help='URL to open after logging in.')
@click.option('-u', '--target-org', default=None, help='Username or alias of the org.')
@click.option('--json', 'as_json', is_flag=True, help='Print the URL as JSON.')
@click.pass_obj
def loginurl(settings, starturl, target_org, as_json):
    """Generate a long-lived shareable login url for the org."""

    target_org = target_org or settings.target_org
    if not target_org:
        raise click.UsageError('A target org is required: pass --target-org or set one in config.ini.')

    url = login_url_for_org(target_org, starturl)
    if as_json:
        click.echo(json.dumps({'status': 0, 'result': url}, indent=2))
    else:
        click.echo(url)
