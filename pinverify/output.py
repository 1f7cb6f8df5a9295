"""Output formatting and shared helpers for the pinverify CLI.

Supports three output formats:
- json: Machine-readable JSON (default, for piping)
- pretty: Indented JSON for human reading
- table: Rich key/value table
"""

import asyncio
import json
from enum import Enum
from typing import Any, Coroutine, NoReturn, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from pinverify.verify.models import OperationResult, VerifyError

# Exit codes
EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILURE = 1
EXIT_PARSE_ERROR = 2
EXIT_IO_ERROR = 3

NETWORK_ERROR = "NETWORK_ERROR"

T = TypeVar("T")


class OutputFormat(str, Enum):
    """Output format options."""

    json = "json"
    pretty = "pretty"
    table = "table"


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run async function from sync CLI context.

    Args:
        coro: Coroutine to execute

    Returns:
        Result of the coroutine
    """
    return asyncio.run(coro)


def output_json(data: Any, pretty: bool = False) -> None:
    """Output data as JSON to stdout.

    Args:
        data: Data to output (must be JSON-serializable)
        pretty: If True, output with indentation
    """
    indent = 2 if pretty else None
    try:
        typer.echo(json.dumps(data, indent=indent, default=str))
    except TypeError as e:
        typer.echo(f"Error serializing output: {e}", err=True)
        raise typer.Exit(EXIT_PARSE_ERROR) from e


def output_table(data: dict[str, Any], title: Optional[str] = None) -> None:
    """Output a flat mapping as a two-column rich table.

    Args:
        data: Mapping to display
        title: Optional table title
    """
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("key")
    table.add_column("value")
    for key, value in data.items():
        table.add_row(str(key), "" if value is None else str(value))
    Console().print(table)


def output(
    data: Any,
    format: OutputFormat = OutputFormat.json,
    table_title: Optional[str] = None,
) -> None:
    """Output data in the specified format.

    Args:
        data: Data to output
        format: Output format (json, pretty, or table)
        table_title: Title for table format
    """
    if format == OutputFormat.json:
        output_json(data, pretty=False)
    elif format == OutputFormat.pretty:
        output_json(data, pretty=True)
    elif isinstance(data, dict):
        output_table(data, title=table_title)
    else:
        typer.echo("Table format requires dict data. Falling back to JSON.", err=True)
        output_json(data, pretty=True)


def output_error(
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    exit_code: int = EXIT_VALIDATION_FAILURE,
) -> NoReturn:
    """Write an error record to stderr and exit with *exit_code*.

    *code* is a ``VerifyError`` value for operation failures, or a CLI
    code such as ``CONFIG_INVALID`` for usage problems.
    """
    record: dict[str, Any] = {"ok": False, "error": code, "message": message, "exit_code": exit_code}
    if details:
        record.update(details)
    typer.echo(json.dumps(record, default=str), err=True)
    raise typer.Exit(exit_code)


def output_failure(result: OperationResult) -> NoReturn:
    """Report a failed session operation on stderr and exit.

    Network failures exit with ``EXIT_IO_ERROR``; everything else the
    service or local validation rejected exits with
    ``EXIT_VALIDATION_FAILURE``.
    """
    details = {"state": result.state.value}
    if result.user_status is not None:
        details["user_status"] = result.user_status.value
    if result.exception is not None:
        output_error(
            code=NETWORK_ERROR,
            message=result.message or type(result.exception).__name__,
            details=details,
            exit_code=EXIT_IO_ERROR,
        )
    output_error(
        code=result.error.value if result.error else VerifyError.INTERNAL_ERR.value,
        message=result.message or "",
        details=details,
        exit_code=EXIT_VALIDATION_FAILURE,
    )
