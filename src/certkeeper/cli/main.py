"""
certkeeper CLI

Commands:
- init: Lay out a CA home, CA keys and the serial counter
- issue: Sign a public key and record the certificate
- renew: Reissue a certificate under a new serial
- history: List every certificate recorded for an identity
- revoke: Not supported (no revocation lists)
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional, TextIO

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from certkeeper import __version__
from certkeeper.authority import CertificateAuthority
from certkeeper.config import ConfigResolver
from certkeeper.exceptions import CertKeeperError, ValidationError
from certkeeper.keys import fingerprint
from certkeeper.record import CertificateRecord, CertState, CertType

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)


def _configure_logging(config: ConfigResolver) -> None:
    level = logging.DEBUG if config.resolve_bool("debug") else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _fail(exc: Exception, exit_code: int = 1) -> NoReturn:
    err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
    sys.exit(exit_code)


def _state_style(state: CertState) -> str:
    return "green" if state is CertState.ISSUED else "yellow"


def _pubkey_fingerprint(pubkey: str) -> str:
    try:
        return fingerprint(pubkey)
    except ValidationError:
        return "unparseable"


def _print_record(record: CertificateRecord, as_json: bool) -> None:
    if as_json:
        click.echo(record.to_document(), nl=False)
        return

    style = _state_style(record.state)
    table = Table(box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Serial", str(record.serial))
    table.add_row("Identity", escape(record.id))
    table.add_row("Type", record.type.value)
    table.add_row("State", f"[{style}]{record.state.value}[/{style}]")
    table.add_row("Principals", escape(", ".join(record.principals)) or "—")
    table.add_row("Options", escape(", ".join(record.options)) or "—")
    table.add_row("Validity", escape(record.validity))
    table.add_row("Key", _pubkey_fingerprint(record.pubkey))
    console.print(table)


def _write_certificate(
    record: CertificateRecord, out_path: Optional[str], announce: bool = True
) -> None:
    if out_path is None or record.certkey is None:
        return
    Path(out_path).write_text(record.certkey + "\n", encoding="utf-8")
    if announce:
        console.print(f"  Certificate written to {escape(out_path)}")


@click.group()
@click.version_option(__version__, prog_name="certkeeper")
@click.option(
    "--base-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="CA home directory (overrides CERTKEEPER_HOME and the config file).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Config file to use instead of the default search paths.",
)
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def app(ctx: click.Context, base_dir: Optional[str], config_path: Optional[str], debug: bool) -> None:
    """certkeeper - SSH certificate authority.

    Issue, renew and track SSH user and host certificates signed with
    ssh-keygen.
    """
    config = ConfigResolver()
    try:
        config.load([config_path] if config_path else None, required=config_path is not None)
        config.set("base_dir", base_dir)
        if debug:
            config.set("debug", True)
        _configure_logging(config)
    except CertKeeperError as exc:
        _fail(exc)

    if config.source is not None:
        logger.debug("Using config file %s", config.source)
    for key, value in config.snapshot().items():
        logger.debug("option %s = %s", key, value)
    ctx.obj = config


@app.command()
@click.option(
    "--serial",
    "start_serial",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="First serial number to hand out.",
)
@click.option(
    "--user-ca-key",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Import this private key as the user CA instead of generating one.",
)
@click.option(
    "--host-ca-key",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Import this private key as the host CA instead of generating one.",
)
@click.option("--force", is_flag=True, default=False, help="Reseed an existing serial counter.")
@click.pass_obj
def init(
    config: ConfigResolver,
    start_serial: int,
    user_ca_key: Optional[str],
    host_ca_key: Optional[str],
    force: bool,
) -> None:
    """Initialize a CA home directory."""
    ca = CertificateAuthority(config)
    try:
        ca_keys = ca.initialize(
            start_serial=start_serial,
            user_ca_key=user_ca_key,
            host_ca_key=host_ca_key,
            force=force,
        )
    except CertKeeperError as exc:
        _fail(exc)

    console.print(f"[green]✓[/green] Initialized CA at {escape(str(config.resolve_path('base_dir')))}")
    for cert_type, path in ca_keys.items():
        console.print(f"  {cert_type.value} CA key: {escape(str(path))}")
    console.print(f"  Next serial: {start_serial}")


@app.command()
@click.argument("identity")
@click.option(
    "--pubkey",
    "pubkey_file",
    type=click.File("r"),
    required=True,
    help="Public key file to sign, or - to read it from stdin.",
)
@click.option(
    "--type",
    "cert_type",
    type=click.Choice([t.value for t in CertType]),
    default=CertType.USER.value,
    show_default=True,
    help="Certificate type.",
)
@click.option("--principal", "-n", "principals", multiple=True, help="Principal (repeatable).")
@click.option("--option", "-O", "options", multiple=True, help="Signer option (repeatable).")
@click.option("--validity", "-V", default=None, help="Validity interval, e.g. +52w.")
@click.option("--out", "out_path", type=click.Path(dir_okay=False), default=None,
              help="Also write the signed certificate to this file.")
@click.option("--json", "json_flag", is_flag=True, help="Print the record as JSON.")
@click.pass_obj
def issue(
    config: ConfigResolver,
    identity: str,
    pubkey_file: TextIO,
    cert_type: str,
    principals: tuple[str, ...],
    options: tuple[str, ...],
    validity: Optional[str],
    out_path: Optional[str],
    json_flag: bool,
) -> None:
    """Issue a certificate for IDENTITY."""
    ca = CertificateAuthority(config)
    try:
        record = ca.issue(
            identity,
            cert_type,
            pubkey_file.read(),
            principals=principals,
            options=options,
            validity=validity,
        )
    except CertKeeperError as exc:
        _fail(exc)

    if not json_flag:
        console.print(f"[green]✓[/green] Issued certificate {record.serial} for {escape(identity)}")
    _print_record(record, json_flag)
    _write_certificate(record, out_path, announce=not json_flag)


@app.command()
@click.argument("serial", type=click.IntRange(min=0))
@click.option("--validity", "-V", default=None, help="Validity interval for the new certificate.")
@click.option("--out", "out_path", type=click.Path(dir_okay=False), default=None,
              help="Also write the new certificate to this file.")
@click.option("--json", "json_flag", is_flag=True, help="Print the new record as JSON.")
@click.pass_obj
def renew(
    config: ConfigResolver,
    serial: int,
    validity: Optional[str],
    out_path: Optional[str],
    json_flag: bool,
) -> None:
    """Renew the certificate with serial SERIAL."""
    ca = CertificateAuthority(config)
    try:
        record = ca.renew(serial, validity=validity)
    except CertKeeperError as exc:
        _fail(exc)

    if not json_flag:
        console.print(
            f"[green]✓[/green] Renewed certificate {serial} as {record.serial} "
            f"for {escape(record.id)}"
        )
    _print_record(record, json_flag)
    _write_certificate(record, out_path, announce=not json_flag)


@app.command()
@click.argument("identity")
@click.option("--json", "json_flag", is_flag=True, help="Print records as a JSON list.")
@click.pass_obj
def history(config: ConfigResolver, identity: str, json_flag: bool) -> None:
    """List every certificate recorded for IDENTITY."""
    ca = CertificateAuthority(config)
    try:
        records = ca.history(identity)
    except CertKeeperError as exc:
        _fail(exc)

    if json_flag:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2, sort_keys=True))
        return

    if not records:
        console.print(f"[yellow]No certificates recorded for {escape(identity)}.[/yellow]")
        return

    table = Table(title=f"Certificates: {escape(identity)}", box=box.ROUNDED)
    table.add_column("Serial", justify="right", style="cyan")
    table.add_column("Type")
    table.add_column("State")
    table.add_column("Validity")
    table.add_column("Principals")
    for r in records:
        style = _state_style(r.state)
        table.add_row(
            str(r.serial),
            r.type.value,
            f"[{style}]{r.state.value}[/{style}]",
            escape(r.validity),
            escape(", ".join(r.principals)) or "—",
        )
    console.print(table)


@app.command()
@click.argument("serial", type=click.IntRange(min=0))
def revoke(serial: int) -> None:
    """Revoke a certificate (not supported)."""
    err_console.print(
        f"[red]Error:[/red] cannot revoke {serial}: certkeeper does not maintain revocation lists"
    )
    sys.exit(2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
