"""Daemon supervisor — run a start function in the foreground or detached.

A start function takes no arguments, starts the service, and returns a
:class:`DaemonHandle`. Both execution modes consume the same start function:

* foreground — call it inline and block on ``wait`` until the service stops
* background — hand it to a detach capability (:func:`daemonize` by default)
  and return without waiting on the service

State machine::

    NotStarted --start--> Listening --stop / failure--> Stopped
              \\--prerequisite fails--> Aborted (absent handle)
"""

from __future__ import annotations

import os
import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sshdog.config.logging import get_diagnostics


@dataclass(frozen=True)
class DaemonHandle:
    """``(wait, stop)`` control pair. Both are None when the start aborted."""

    wait: Callable[[], None] | None = None
    stop: Callable[[], None] | None = None

    @classmethod
    def absent(cls) -> DaemonHandle:
        return cls()

    @property
    def is_absent(self) -> bool:
        return self.wait is None and self.stop is None


StartFn = Callable[[], DaemonHandle]
DetachFn = Callable[[StartFn, Any], None]

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _stop_handler(stop: Callable[[], None]) -> Callable[[int, Any], None]:
    # The handler runs in the main thread, possibly while wait() holds the
    # lock stop() needs, so stop() has to run on its own thread.
    def handler(_signum: int, _frame: Any) -> None:
        threading.Thread(target=stop, name="sshdog-stop", daemon=True).start()

    return handler


def _install_stop_signals(stop: Callable[[], None]) -> dict[int, Any]:
    """Route SIGINT/SIGTERM to *stop*. Only possible from the main thread."""
    if threading.current_thread() is not threading.main_thread():
        return {}
    handler = _stop_handler(stop)
    previous: dict[int, Any] = {}
    for signum in STOP_SIGNALS:
        previous[signum] = signal.signal(signum, handler)
    return previous


def _restore_signals(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def run_foreground(start_fn: StartFn, *, log: Any) -> DaemonHandle:
    """Start inline and block until the service stops.

    An absent handle returns immediately; there is nothing to wait on.
    """
    handle = start_fn()
    if handle.wait is None:
        log.debug("start_aborted")
        return handle
    previous = _install_stop_signals(handle.stop) if handle.stop is not None else {}
    try:
        handle.wait()
    finally:
        _restore_signals(previous)
    return handle


def _redirect_stdio() -> None:
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    if devnull > 2:
        os.close(devnull)


def daemonize(start_fn: StartFn, log: Any) -> None:
    """Detach from the controlling terminal and run *start_fn* there.

    Double fork with a new session in between. The calling process returns
    as soon as the first child exists; the grandchild runs the service and
    exits when it stops (status 1 if the start aborted).
    """
    pid = os.fork()
    if pid != 0:
        os.waitpid(pid, 0)
        return

    # First child: new session, then fork again so the daemon can never
    # reacquire a controlling terminal.
    status = 1
    try:
        os.setsid()
        if os.fork() != 0:
            status = 0
            return
        os.umask(0o022)
        _redirect_stdio()
        handle = start_fn()
        if handle.wait is not None:
            handle.wait()
            status = 0
    except Exception:
        log.exception("daemon_failed")
    finally:
        os._exit(status)


def supervise(
    start_fn: StartFn,
    *,
    foreground: bool,
    log: Any = None,
    detach: DetachFn = daemonize,
) -> None:
    """Run *start_fn* inline (blocking) or through *detach* (non-blocking).

    Errors raised by the detach capability itself are logged, not
    propagated; the original process is about to exit anyway.
    """
    log = log or get_diagnostics()
    if foreground:
        run_foreground(start_fn, log=log)
        return
    try:
        detach(start_fn, log)
    except OSError as exc:
        log.error("daemonize_failed", error=str(exc))
