# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""pinverify command-line entry point and logging setup.

**Commands**

* ``pinverify sign KEY=VALUE...``: print the canonical string and the
  request signature for a parameter set.  Useful when debugging a
  credentials mismatch against the service.
* ``pinverify verify COUNTRY NUMBER``: start a verification and prompt
  for the PIN delivered to the handset.
* ``pinverify status COUNTRY NUMBER``: query a number's user status.
* ``pinverify command COUNTRY NUMBER CMD``: send ``logout``,
  ``cancel`` or ``trigger_next_event``.

Credentials are read from ``--app-id`` / ``--secret`` or the
``PINVERIFY_APP_ID`` / ``PINVERIFY_SHARED_SECRET`` environment
variables.  Output is JSON on stdout; errors are JSON on stderr.

**Logging**

Structured JSON logging is configured once per invocation from
``LOG_LEVEL`` / ``LOG_FORMAT``.  CLI logs go to stderr so stdout stays
machine-readable.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, TextIO

import typer

from pinverify.config import LOG_FORMAT, LOG_LEVEL, SDK_REVISION
from pinverify.output import (
    EXIT_PARSE_ERROR,
    OutputFormat,
    output,
    output_error,
    output_failure,
    run_async,
)
from pinverify.verify.environment import ClientEnvironment, Environment
from pinverify.verify.exceptions import ClientConfigError
from pinverify.verify.models import Command, OperationResult, SessionState
from pinverify.verify.session import VerifySession
from pinverify.verify.signing import canonical_string, sign_request


# ======================================================================
# Structured JSON logging
# ======================================================================


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter.

    Produces one JSON object per log line with fields ``timestamp``,
    ``level``, ``logger``, ``message``, ``module`` and ``funcName``.
    If the log record carries an exception, it is serialized as an
    ``exception`` field containing the formatted traceback string.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(
    level: str = LOG_LEVEL,
    log_format: str = LOG_FORMAT,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure root logging for the client.

    All existing handlers are removed first to prevent duplicate output
    when the host application has already configured logging.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    if log_format.lower() == "json":
        handler.setFormatter(_JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Suppress noisy third-party loggers.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# ======================================================================
# CLI
# ======================================================================

app = typer.Typer(
    name="pinverify",
    help="Phone-number verification client for the signed SDK API.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pinverify version {SDK_REVISION}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    app_id: Optional[str] = typer.Option(None, "--app-id", envvar="PINVERIFY_APP_ID", help="Application id."),
    secret: Optional[str] = typer.Option(
        None, "--secret", envvar="PINVERIFY_SHARED_SECRET", help="Shared secret.", show_default=False,
    ),
    device_id: Optional[str] = typer.Option(None, "--device-id", envvar="PINVERIFY_DEVICE_ID", help="Device id."),
    environment: Environment = typer.Option(
        Environment.PRODUCTION, "--environment", envvar="PINVERIFY_ENVIRONMENT", help="Target environment.",
    ),
    base_url: Optional[str] = typer.Option(None, "--base-url", envvar="PINVERIFY_BASE_URL", help="Endpoint override."),
    log_level: str = typer.Option(LOG_LEVEL, "--log-level", help="Log level."),
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """pinverify - verify phone numbers with a PIN delivered out of band.

    Examples:
        pinverify --secret s3cr3t sign app_id=abc number=447700900000
        pinverify verify GB 447700900000
        pinverify command GB 447700900000 cancel
    """
    configure_logging(level=log_level)
    ctx.obj = {
        "app_id": app_id,
        "secret": secret,
        "device_id": device_id,
        "environment": environment,
        "base_url": base_url,
    }


def _environment(ctx: typer.Context) -> ClientEnvironment:
    settings = ctx.obj or {}
    device_id = settings.get("device_id")
    try:
        return ClientEnvironment(
            app_id=settings.get("app_id") or "",
            shared_secret=settings.get("secret") or "",
            device_id_provider=lambda: device_id,
            environment=settings.get("environment", Environment.PRODUCTION),
            base_url=settings.get("base_url"),
        )
    except ClientConfigError as e:
        output_error(code="CONFIG_INVALID", message=str(e), exit_code=EXIT_PARSE_ERROR)
        raise  # unreachable, output_error exits


def _finish(result: OperationResult, data: Any, format: OutputFormat, title: str) -> None:
    output(data, format, table_title=title)
    if not result.success:
        output_failure(result)


def _parse_pairs(pairs: List[str]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            output_error(
                code="PARAM_INVALID",
                message=f"Expected KEY=VALUE, got {pair!r}",
                exit_code=EXIT_PARSE_ERROR,
            )
        params[key] = value
    return params


@app.command("sign")
def sign_cmd(
    ctx: typer.Context,
    pairs: List[str] = typer.Argument(..., help="Request parameters as KEY=VALUE"),
    timestamp: Optional[int] = typer.Option(None, "--timestamp", help="Epoch seconds to sign with."),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Sign a parameter set and print the canonical string and digest."""
    secret = (ctx.obj or {}).get("secret")
    if not secret:
        output_error(code="CONFIG_INVALID", message="Shared secret is required", exit_code=EXIT_PARSE_ERROR)

    signed, digest = sign_request(_parse_pairs(pairs), secret, now=timestamp)
    output(
        {"canonical": canonical_string(signed), "sig": digest, "params": signed},
        format,
        table_title="Signed request",
    )


@app.command("verify")
def verify_cmd(
    ctx: typer.Context,
    country_code: str = typer.Argument(..., help="ISO country code, e.g. GB"),
    phone_number: str = typer.Argument(..., help="Phone number"),
    pin: Optional[str] = typer.Option(None, "--pin", help="PIN code; prompted for when omitted."),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Start a verification and check the PIN the user received."""
    environment = _environment(ctx)

    async def _run() -> tuple[OperationResult, Dict[str, Any]]:
        async with VerifySession.create(environment) as session:
            started = await session.start_verification(country_code, phone_number)
            data: Dict[str, Any] = {"start": started.to_dict()}
            if not started.success or started.state != SessionState.PENDING:
                return started, data
            code = pin or await asyncio.to_thread(typer.prompt, "PIN code", hide_input=True)
            checked = await session.check_pin(code)
            data["check"] = checked.to_dict()
            return checked, data

    result, data = run_async(_run())
    _finish(result, data, format, "Verification")


@app.command("status")
def status_cmd(
    ctx: typer.Context,
    country_code: str = typer.Argument(..., help="ISO country code"),
    phone_number: str = typer.Argument(..., help="Phone number"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Query the user status of a number."""
    environment = _environment(ctx)

    async def _run() -> OperationResult:
        async with VerifySession.create(environment) as session:
            return await session.query_status(country_code, phone_number)

    result = run_async(_run())
    _finish(result, result.to_dict(), format, "User status")


@app.command("command")
def command_cmd(
    ctx: typer.Context,
    country_code: str = typer.Argument(..., help="ISO country code"),
    phone_number: str = typer.Argument(..., help="Phone number"),
    command: Command = typer.Argument(..., help="Command to send"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f", help="Output format"),
) -> None:
    """Send a control command for a number."""
    environment = _environment(ctx)

    async def _run() -> OperationResult:
        async with VerifySession.create(environment) as session:
            return await session.command(country_code, phone_number, command)

    result = run_async(_run())
    _finish(result, result.to_dict(), format, f"Command {command.value}")


if __name__ == "__main__":
    app()
