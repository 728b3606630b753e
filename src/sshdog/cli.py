"""Root CLI command for sshdog.

Two modes, chosen by whether a ``config`` path exists in the working
directory:

* unbundled — flags and ``SSHDOG_PORT`` pick the port, keys come from
  ``~/.ssh``
* bundled — the resource bundle supplies port, daemon/quiet switches and
  keys; only the positional PORT argument overrides it
"""

from __future__ import annotations

import click

from sshdog import __version__
from sshdog.bootstrap import make_bundled_start, make_default_start
from sshdog.config.discovery import BundleNotFoundError, detect_bundled_mode, require_bundle
from sshdog.config.logging import configure_logging, get_diagnostics
from sshdog.config.models import DEFAULT_PORT, QUIET_ENTRY
from sshdog.config.settings import PortHandoff, resolve_bundled, resolve_unbundled
from sshdog.daemon import supervise


@click.command()
@click.version_option(version=__version__, prog_name="sshdog")
@click.option("-d", "--daemon", "daemon_mode", is_flag=True, help="Enable daemon mode.")
@click.option(
    "-p", "--port", type=int, default=0, help=f"Listen port, default {DEFAULT_PORT}."
)
@click.option("-q", "--quiet", is_flag=True, help="Suppress diagnostics.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.argument("port_arg", metavar="[PORT]", required=False)
def cli(
    daemon_mode: bool,
    port: int,
    quiet: bool,
    log_json: bool,
    port_arg: str | None,
) -> None:
    """sshdog — portable SSH daemon."""
    if detect_bundled_mode():
        _run_bundled(port_arg, log_json=log_json)
    else:
        _run_unbundled(daemon_mode=daemon_mode, port=port, quiet=quiet, log_json=log_json)


def _run_unbundled(*, daemon_mode: bool, port: int, quiet: bool, log_json: bool) -> None:
    configure_logging(quiet=quiet, log_json=log_json)
    log = get_diagnostics(quiet=quiet)

    handoff = PortHandoff()
    config = resolve_unbundled(
        flag_port=port, daemonize=daemon_mode, quiet=quiet, handoff=handoff, log=log
    )
    log.debug("config_directory_missing", port=config.port, keys="~/.ssh")

    start = make_default_start(handoff, log=log)
    supervise(start, foreground=not config.daemonize, log=log)


def _run_bundled(port_arg: str | None, *, log_json: bool) -> None:
    configure_logging(log_json=log_json)
    log = get_diagnostics()

    try:
        bundle = require_bundle(log=log)
    except BundleNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    if bundle.exists(QUIET_ENTRY):
        configure_logging(quiet=True, log_json=log_json)
        log = get_diagnostics(quiet=True)

    config = resolve_bundled(bundle, port_arg=port_arg, log=log)
    start = make_bundled_start(bundle, config.port, log=log)
    supervise(start, foreground=not config.daemonize, log=log)
