"""Start closures wiring configuration and credentials into the server.

Each factory returns a zero-argument start function for the supervisor.
A start function never raises for missing prerequisites: credential and
bind failures are logged and produce an absent :class:`DaemonHandle`, so
nothing is left listening.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from sshdog.config.discovery import ResourceBundle
from sshdog.config.models import DEFAULT_PORT
from sshdog.config.settings import PortHandoff
from sshdog.credentials import (
    CredentialError,
    CredentialSet,
    bootstrap_from_bundle,
    bootstrap_from_home,
)
from sshdog.daemon import DaemonHandle, StartFn
from sshdog.server import Server, SessionHandler


def _start(
    resolve_credentials: Callable[[], CredentialSet],
    port: Callable[[], int],
    *,
    log: Any,
    session_handler: SessionHandler | None,
) -> DaemonHandle:
    try:
        credentials = resolve_credentials()
    except CredentialError as exc:
        log.error("start_aborted", reason=str(exc))
        return DaemonHandle.absent()

    server = Server(credentials, session_handler=session_handler, log=log)
    listen_port = port()
    try:
        return server.listen_and_serve(listen_port)
    except OSError as exc:
        log.error("start_aborted", reason=f"listen on port {listen_port} failed: {exc}")
        return DaemonHandle.absent()


def make_bundled_start(
    bundle: ResourceBundle,
    port: int,
    *,
    log: Any,
    session_handler: SessionHandler | None = None,
) -> StartFn:
    """Start function sourcing keys from *bundle*."""

    def start() -> DaemonHandle:
        return _start(
            lambda: bootstrap_from_bundle(bundle, log=log),
            lambda: port,
            log=log,
            session_handler=session_handler,
        )

    return start


def make_default_start(
    handoff: PortHandoff,
    *,
    log: Any,
    home: Path | None = None,
    session_handler: SessionHandler | None = None,
) -> StartFn:
    """Start function sourcing keys from ``~/.ssh``.

    The port is read from *handoff* when the function runs, which may be in
    a detached process.
    """

    def port() -> int:
        value = handoff.read()
        return DEFAULT_PORT if value is None else value

    def start() -> DaemonHandle:
        return _start(
            lambda: bootstrap_from_home(home, log=log),
            port,
            log=log,
            session_handler=session_handler,
        )

    return start
