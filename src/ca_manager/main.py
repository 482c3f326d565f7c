"""
Application entry point — wires the manager and runs one CLI command.

Composition root: loads AppSettings, configures structlog and owns the
CertificateAuthorityManager for the lifetime of the command.

Commands:
  ca-manager info <path>                   identity, counters and collection sizes
  ca-manager crl <path> [--days N]         unlock (passphrase prompt) and issue a CRL
  ca-manager show <path> [--html]          unlock and print a report of the CA and its CRLs
  ca-manager backup <path> <archive>       write the CA directory to a zip archive
  ca-manager restore <archive> <dest>      unpack a backup under <dest> and open it

Exit code 0 on success, 1 on any failure.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from collections.abc import Callable
from datetime import timedelta
from typing import Any, TextIO, TypeVar

import structlog

from ca_manager.adapters.output import HTMLOutputRenderer, TextOutputRenderer
from ca_manager.authority import CertificateAuthority
from ca_manager.config import AppSettings
from ca_manager.domain.failure import CaError, FailureDescription
from ca_manager.domain.models import utc_now
from ca_manager.domain.result import Result
from ca_manager.manager import CertificateAuthorityManager
from ca_manager.properties import CRLProperties
from ca_manager.render import render_authority, render_crl

T = TypeVar("T")

PASSWORD_ENV = "CA_MANAGER_PASSWORD"
SHOW_CRL_ENTRIES = 20


def configure_structlog(log_level: str = "INFO", stream: TextIO | None = None) -> None:
    """
    Configure structlog for structured, human-readable console logging.

    Log lines go to stderr so command output on stdout stays clean.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(stream or sys.stderr),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ca-manager", description="Private X.509 certificate authority manager")
    commands = parser.add_subparsers(dest="command", required=True)

    info = commands.add_parser("info", help="Show identity, serial counters and collection sizes")
    info.add_argument("path", help="Certificate authority directory")

    crl = commands.add_parser("crl", help="Unlock the CA and issue a new CRL")
    crl.add_argument("path", help="Certificate authority directory")
    crl.add_argument("--days", type=int, default=None, help="Days until the next expected CRL")

    show = commands.add_parser("show", help="Unlock the CA and print a report of it and its CRLs")
    show.add_argument("path", help="Certificate authority directory")
    show.add_argument("--html", action="store_true", help="Write an HTML page instead of plain text")

    backup = commands.add_parser("backup", help="Write the CA directory to a zip archive")
    backup.add_argument("path", help="Certificate authority directory")
    backup.add_argument("archive", help="Archive file to create")

    restore = commands.add_parser("restore", help="Unpack a backup archive and open the restored CA")
    restore.add_argument("archive", help="Backup archive")
    restore.add_argument("destination", help="Directory to restore into")
    return parser


def _read_password() -> str:
    """Passphrase from CA_MANAGER_PASSWORD, else an interactive prompt."""
    return os.environ.get(PASSWORD_ENV) or getpass.getpass("CA passphrase: ")


def _unlock(ca: CertificateAuthority) -> Result[CertificateAuthority]:
    return ca.unlock(_read_password())


def _report(error: FailureDescription) -> int:
    print(f"error: [{error.code.name}] {error.message}", file=sys.stderr)  # noqa: T201
    return 1


def _finish(result: Result[T], on_success: Callable[[T], Any]) -> int:
    return result.peek(on_success).either(lambda _: 0, _report)


def _print_info(ca: CertificateAuthority) -> None:
    lines = [
        f"Certificate authority: {ca}",
        f"Path:                  {ca.base_path}",
        f"UUID:                  {ca.certificate_authority_id}",
        f"Description:           {ca.description or ''}",
        f"Expiry days:           {ca.expiry_days}",
        f"Incremental serial:    {ca.incremental_serial}",
        f"Next serial:           {ca.peek_next_serial_number()}",
        f"Next CRL serial:       {ca.peek_next_crl_serial_number()}",
        f"Requests:              {len(ca.certificate_requests)}",
        f"Issued:                {len(ca.issued_certificates)}",
        f"Revoked:               {len(ca.revoked_certificates)}",
        f"CRLs:                  {len(ca.crls)}",
        f"Templates:             {len(ca.templates)}",
    ]
    print("\n".join(lines))  # noqa: T201


def _show(ca: CertificateAuthority, html: bool) -> None:
    renderer = HTMLOutputRenderer(sys.stdout, str(ca)) if html else TextOutputRenderer(sys.stdout)
    render_authority(renderer, ca)
    for crl in ca.crls:
        render_crl(renderer, crl, entry_limit=SHOW_CRL_ENTRIES)
    renderer.finish()


def _issue_crl(ca: Result[CertificateAuthority], days: int) -> Result[CRLProperties]:
    log = structlog.get_logger()
    return (
        Result.success(days)
        .ensure(lambda d: d > 0, CaError.INVALID_ARGUMENT, f"CRL validity must be positive, got {days} days")
        .flat_map(lambda d: ca.flat_map(_unlock).flat_map(lambda u: u.create_crl(utc_now() + timedelta(days=d))))
        .peek(lambda crl: log.info("app.crl_issued", crl_number=crl.crl_serial_number, file=crl.path.name))
    )


def run(args: argparse.Namespace, settings: AppSettings) -> int:
    manager = CertificateAuthorityManager(settings)
    try:
        if args.command == "restore":
            restored = manager.restore(args.archive, args.destination)
            return _finish(restored, lambda opened: print(opened.base_path))  # noqa: T201

        ca = manager.open(args.path)
        match args.command:
            case "info":
                return _finish(ca, _print_info)
            case "show":
                return _finish(ca.flat_map(_unlock), lambda unlocked: _show(unlocked, args.html))
            case "backup":
                return _finish(ca.flat_map(lambda opened: opened.backup(args.archive)), print)  # noqa: T201
            case _:
                days = args.days if args.days is not None else settings.crl_validity_days
                return _finish(_issue_crl(ca, days), lambda crl: print(crl.path))  # noqa: T201
    finally:
        manager.close()


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, load configuration and run the command."""
    args = build_parser().parse_args(argv)
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        return 1

    configure_structlog(settings.log_level)
    structlog.get_logger().debug("app.starting", command=args.command, log_level=settings.log_level)
    return run(args, settings)


if __name__ == "__main__":
    sys.exit(main())
