# src/rowgate/cli.py
"""rowgate Command Line Interface.

Entry point for the rowgate CLI tool: ad-hoc reads, lookups, header checks
and deletes against the configured spreadsheet.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
import yaml
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from rowgate import __version__
from rowgate.access import AccessLayer
from rowgate.contracts.errors import RowStoreError
from rowgate.contracts.rows import LogicalRow, where
from rowgate.core.config import RowGateSettings, load_settings, resolve_config

__all__ = ["app"]

T = TypeVar("T")

# --verbose / --json-logs win over the settings file's logging section
_logging_flags: dict[str, bool] = {"explicit": False}

app = typer.Typer(
    name="rowgate",
    help="rowgate: rate-limited, retrying access to spreadsheet rows.",
    no_args_is_help=True,
)

SETTINGS_OPTION = typer.Option(
    "settings.yaml",
    "--settings",
    "-s",
    help="Path to settings YAML file.",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"rowgate version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """rowgate: rate-limited, retrying access to spreadsheet rows."""
    from rowgate.core.logging import configure_logging

    _logging_flags["explicit"] = verbose or json_logs
    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING", stream=sys.stderr)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _load_or_exit(settings: str) -> RowGateSettings:
    settings_path = Path(settings).expanduser()
    try:
        config = load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {getattr(e, 'problem', e)}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        # must precede ValueError handling: ValidationError inherits from it
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None

    if not _logging_flags["explicit"]:
        from rowgate.core.logging import configure_from_settings

        configure_from_settings(config.logging, stream=sys.stderr)
    return config


def _build_access_layer(settings: RowGateSettings) -> AccessLayer:
    """Build the access layer for a command (replaced in tests)."""
    return AccessLayer.from_settings(settings)


def _run(settings: RowGateSettings, work: Callable[[AccessLayer], Awaitable[T]]) -> T:
    """Run one command against a fresh access layer, mapping failures to exit 1."""

    async def _main() -> T:
        async with _build_access_layer(settings) as access:
            return await work(access)

    try:
        return asyncio.run(_main())
    except RowStoreError as e:
        typer.echo(f"Error ({e.kind}): {e}", err=True)
        raise typer.Exit(1) from None


def _parse_filters(filters: list[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for item in filters:
        column, sep, value = item.partition("=")
        if not sep or not column.strip():
            typer.echo(f"Error: --where expects COLUMN=VALUE, got {item!r}", err=True)
            raise typer.Exit(2)
        parsed[column.strip()] = value
    return parsed


def _echo_row(row: LogicalRow) -> None:
    typer.echo(json.dumps({"position": row.position, **row.to_dict()}))


@app.command()
def get(
    range_: str = typer.Argument(..., metavar="RANGE", help="A1 range, e.g. \"'Users'!A1:C10\"."),
    settings: str = SETTINGS_OPTION,
) -> None:
    """Print the values of a range, one JSON array per row."""
    config = _load_or_exit(settings)
    values = _run(config, lambda access: access.engine.get(range_))
    for row in values:
        typer.echo(json.dumps(row))


@app.command()
def find(
    sheet: str = typer.Argument(..., help="Sheet title."),
    key: str = typer.Option(..., "--key", "-k", help="Key column."),
    value: str = typer.Option(..., "--value", help="Key value to look up."),
    settings: str = SETTINGS_OPTION,
) -> None:
    """Print the first row whose key column equals the value."""
    config = _load_or_exit(settings)
    row = _run(config, lambda access: access.engine.find_row(sheet, key, value))
    if row is None:
        typer.echo(f"No row in {sheet!r} with {key} = {value!r}", err=True)
        raise typer.Exit(1)
    _echo_row(row)


@app.command("ensure-schema")
def ensure_schema(
    sheets: list[str] = typer.Argument(None, help="Sheets to check (default: every configured schema)."),
    settings: str = SETTINGS_OPTION,
) -> None:
    """Create missing sheets and write missing headers for configured schemas."""
    config = _load_or_exit(settings)
    targets = sheets or sorted(config.schemas)
    if not targets:
        typer.echo("No schemas configured.", err=True)
        raise typer.Exit(1)
    unknown = [sheet for sheet in targets if sheet not in config.schemas]
    if unknown:
        typer.echo(f"Error: no schema configured for: {', '.join(unknown)}", err=True)
        raise typer.Exit(1)

    async def _ensure(access: AccessLayer) -> dict[str, tuple[str, ...]]:
        return {sheet: await access.engine.ensure_schema(sheet) for sheet in targets}

    for sheet, header in _run(config, _ensure).items():
        typer.echo(f"{sheet}: {', '.join(header)}")


@app.command()
def delete(
    sheet: str = typer.Argument(..., help="Sheet title."),
    filters: list[str] = typer.Option(..., "--where", "-w", help="COLUMN=VALUE filter (repeatable, all must match)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Delete without asking for confirmation."),
    settings: str = SETTINGS_OPTION,
) -> None:
    """Delete every row matching all --where filters."""
    config = _load_or_exit(settings)
    predicate = where(_parse_filters(filters))

    if not yes:

        async def _preview(access: AccessLayer) -> list[LogicalRow]:
            return [row for row in await access.engine.list_rows(sheet) if predicate(row)]

        matches = _run(config, _preview)
        if not matches:
            typer.echo("No matching rows.")
            return
        typer.confirm(f"Delete {len(matches)} row(s) from {sheet!r}?", abort=True)

    deleted = _run(config, lambda access: access.engine.delete_rows(sheet, predicate))
    for row in deleted:
        _echo_row(row)
    typer.echo(f"Deleted {len(deleted)} row(s).", err=True)


@app.command("check-config")
def check_config(
    settings: str = SETTINGS_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of YAML."),
) -> None:
    """Validate a settings file and print the resolved configuration (secrets redacted)."""
    config = _load_or_exit(settings)
    resolved: dict[str, Any] = resolve_config(config)
    if as_json:
        typer.echo(json.dumps(resolved, indent=2, sort_keys=True))
    else:
        typer.echo(yaml.dump(resolved, default_flow_style=False, sort_keys=False))


if __name__ == "__main__":
    app()
