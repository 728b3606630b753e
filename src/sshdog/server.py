"""TCP listener for the SSH service.

Binds the listen port, accepts connections on a background thread, and
hands each connection to a session handler together with the resolved
:class:`~sshdog.credentials.CredentialSet`. The SSH protocol itself lives
behind the session handler; the default handler closes the connection.

``stop()`` may be called from any thread or a signal handler, any number of
times. ``wait()`` returns once the server has stopped, whether through
``stop()`` or because the accept loop failed.
"""

from __future__ import annotations

import socket
import threading
from collections.abc import Callable
from typing import Any

from sshdog.config.logging import get_diagnostics
from sshdog.credentials import CredentialSet
from sshdog.daemon import DaemonHandle

# Seconds between stop checks while blocked in accept().
ACCEPT_POLL_INTERVAL = 0.2

SessionHandler = Callable[[socket.socket, Any, CredentialSet], None]


def close_session(conn: socket.socket, address: Any, credentials: CredentialSet) -> None:
    conn.close()


class Server:
    """Listener owning the credentials it was constructed with."""

    def __init__(
        self,
        credentials: CredentialSet,
        *,
        session_handler: SessionHandler | None = None,
        host: str = "",
        log: Any = None,
    ) -> None:
        self.credentials = credentials
        self.host = host
        self.address: tuple[Any, ...] | None = None
        self._session_handler = session_handler or close_session
        self._log = log or get_diagnostics()
        self._sock: socket.socket | None = None
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def listening(self) -> bool:
        return self._sock is not None and not self._stopped.is_set()

    def listen_and_serve(self, port: int) -> DaemonHandle:
        """Bind *port* and start accepting. Bind failures raise ``OSError``."""
        if self._sock is not None:
            msg = "server already started"
            raise RuntimeError(msg)
        sock = self._bind(port)
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        self._sock = sock
        self.address = sock.getsockname()
        self._thread = threading.Thread(
            target=self._serve, args=(sock,), name="sshdog-accept", daemon=True
        )
        self._thread.start()
        self._log.info("server_listening", port=self.address[1])
        return DaemonHandle(wait=self.wait, stop=self.stop)

    def _bind(self, port: int) -> socket.socket:
        # An empty host means every interface, IPv6 included where available.
        if not self.host and socket.has_dualstack_ipv6():
            return socket.create_server(("", port), family=socket.AF_INET6, dualstack_ipv6=True)
        return socket.create_server((self.host, port))

    def _serve(self, sock: socket.socket) -> None:
        try:
            while not self._stopped.is_set():
                try:
                    conn, address = sock.accept()
                except TimeoutError:
                    continue
                except OSError as exc:
                    if not self._stopped.is_set():
                        self._log.error("accept_failed", error=str(exc))
                    break
                conn.settimeout(None)
                threading.Thread(
                    target=self._handle,
                    args=(conn, address),
                    name=f"sshdog-session-{address}",
                    daemon=True,
                ).start()
        finally:
            sock.close()
            self._stopped.set()
            self._log.info("server_stopped")

    def _handle(self, conn: socket.socket, address: Any) -> None:
        self._log.debug("session_accepted", peer=str(address))
        try:
            self._session_handler(conn, address, self.credentials)
        except Exception:
            self._log.exception("session_failed", peer=str(address))
        finally:
            conn.close()

    def stop(self) -> None:
        """Request shutdown. Idempotent."""
        if not self._stopped.is_set():
            self._log.debug("server_stop_requested")
        self._stopped.set()

    def wait(self) -> None:
        """Block until the server has stopped."""
        self._stopped.wait()
