"""CLI for the refine cloud client."""

import json
import logging
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from refine_sdk.auth import ACCESS_TOKEN_KEY, CLOUD_TOKEN_KEY, REFRESH_TOKEN_KEY, detect_storage
from refine_sdk.client import Client
from refine_sdk.config import ClientConfig
from refine_sdk.errors import RefineCloudError

app = typer.Typer(name='refine-sdk', help='Authenticated calls against the refine cloud API')
console = Console()


@app.callback()
def main(
    log_level: str = typer.Option('WARNING', '--log-level', help='Logging level (DEBUG, INFO, WARNING, ERROR)'),
):
    """Configure logging for all commands."""
    logging.basicConfig(
        level=log_level.upper(),
        format='%(asctime)s %(name)s [%(levelname)s] %(message)s',
    )


def _parse_pairs(pairs: Optional[List[str]], option: str) -> dict:
    parsed = {}
    for pair in pairs or []:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got '{pair}'", param_hint=option)
        parsed[key] = value
    return parsed


def _load_config() -> ClientConfig:
    try:
        return ClientConfig.from_env()
    except ValueError as e:
        console.print(f'[bold red]Configuration error:[/bold red] {escape(str(e))}')
        sys.exit(1)


def _mask(token: Optional[str]) -> str:
    if not token:
        return '[dim]not set[/dim]'
    if len(token) <= 8:
        return '****'
    return f'{token[:4]}…{token[-4:]}'


@app.command()
def call(
    method: str = typer.Argument(..., help='HTTP method (get, delete, head, options, post, put, patch)'),
    url: str = typer.Argument(..., help='Path relative to REFINE_BASE_URL'),
    param: Optional[List[str]] = typer.Option(None, '--param', '-p', help='Query parameter as key=value'),
    header: Optional[List[str]] = typer.Option(None, '--header', '-H', help='Request header as key=value'),
    data: Optional[str] = typer.Option(None, '--data', '-d', help='JSON request body'),
    skip_auth_refresh: bool = typer.Option(False, '--skip-auth-refresh', help='Do not refresh on 401'),
):
    """Make one authenticated call and print the decoded body."""
    config = _load_config()

    body = None
    if data is not None:
        try:
            body = json.loads(data)
        except json.JSONDecodeError as e:
            raise typer.BadParameter(f'Invalid JSON: {e}', param_hint='--data')

    params = _parse_pairs(param, '--param') or None
    headers = _parse_pairs(header, '--header')

    try:
        with Client.from_config(config) as client:
            result = client.call(
                method,
                url,
                params=params,
                data=body,
                headers=headers,
                skip_auth_refresh=skip_auth_refresh,
            )
    except ValueError as e:
        console.print(f'[bold red]Error:[/bold red] {escape(str(e))}')
        sys.exit(1)
    except RefineCloudError as e:
        console.print(f'[bold red]Request failed ({type(e).__name__}):[/bold red] {escape(str(e))}')
        sys.exit(1)

    if isinstance(result, str):
        console.print(escape(result))
    else:
        console.print_json(json.dumps(result))


@app.command()
def tokens():
    """Show which tokens are stored for the configured client."""
    config = _load_config()
    storage = detect_storage(config.token_file, persist=config.persist_tokens)

    table = Table(title=f'Token storage: {type(storage).__name__}')
    table.add_column('Key', style='cyan')
    table.add_column('Value')

    for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, CLOUD_TOKEN_KEY):
        table.add_row(key, _mask(storage.get(key)))

    console.print(table)


if __name__ == '__main__':
    app()
