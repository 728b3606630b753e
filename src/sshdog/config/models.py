"""Pydantic configuration models with code-baked defaults.

The effective config is computed once per process start and is frozen
thereafter. Ports must lie strictly between 1024 and 65535.
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator

# --- Compiled-in defaults ---

DEFAULT_PORT = 8022
"""Default listen port when no bundle is present."""

BUNDLED_DEFAULT_PORT = 2222
"""Default listen port when running from a resource bundle."""

PORT_MIN = 1024
PORT_MAX = 65535

PORT_ENV_VAR = "SSHDOG_PORT"
BUNDLE_NAME = "config"

# --- Bundle layout ---

PORT_ENTRY = "port"
DAEMON_ENTRY = "daemon"
QUIET_ENTRY = "quiet"
AUTHORIZED_KEYS_ENTRY = "authorized_keys"

# Tried in this order; every entry that parses becomes a host key.
HOST_KEY_ENTRIES: tuple[str, ...] = (
    "ssh_host_ed25519_key",
    "ssh_host_ecdsa_key",
    "ssh_host_rsa_key",
)


def port_in_range(port: int) -> bool:
    """Whether *port* lies strictly inside (1024, 65535)."""
    return PORT_MIN < port < PORT_MAX


class EffectiveConfig(BaseModel):
    """Resolved runtime configuration, frozen after construction."""

    model_config = {"frozen": True}

    port: int
    daemonize: bool = False
    quiet: bool = False
    bundled: bool = False

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not port_in_range(value):
            msg = f"port {value} outside ({PORT_MIN}, {PORT_MAX})"
            raise ValueError(msg)
        return value
