"""Layered settings — CLI input, environment handoff, bundle, and defaults.

Unbundled priority chain (highest to lowest):
  1. ``-p/--port`` flag, when > 0
  2. ``SSHDOG_PORT`` read through the :class:`PortHandoff` channel
  3. Code default (8022), also applied to any out-of-range result

Bundled priority chain (highest to lowest):
  1. Numeric positional argument
  2. ``port`` entry in the resource bundle
  3. Code default (2222)

In bundled mode a malformed or out-of-range candidate is dropped at its own
level, so resolution falls through to the next source.  Nothing here is
ever fatal.

Uses Pydantic Settings v2 with custom sources in place of the stock
env/dotenv sources.
"""

from __future__ import annotations

import os
import re
import threading
from collections.abc import MutableMapping
from typing import Any

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from sshdog.config.discovery import ResourceBundle
from sshdog.config.logging import get_diagnostics
from sshdog.config.models import (
    BUNDLED_DEFAULT_PORT,
    DAEMON_ENTRY,
    DEFAULT_PORT,
    PORT_ENTRY,
    PORT_ENV_VAR,
    QUIET_ENTRY,
    EffectiveConfig,
    port_in_range,
)


class PortHandoff:
    """Carries the resolved port to the start closure across a detach.

    Backed by an environment mapping (``os.environ`` by default) so a forked
    or re-executed process inherits it.  :meth:`publish` only writes when the
    value changes; :attr:`writes` counts actual writes.
    """

    def __init__(
        self,
        environ: MutableMapping[str, str] | None = None,
        var: str = PORT_ENV_VAR,
    ) -> None:
        self._environ = os.environ if environ is None else environ
        self.var = var
        self.writes = 0

    def read_raw(self) -> str | None:
        """Return the raw channel value, treating empty as unset."""
        return self._environ.get(self.var) or None

    def read(self) -> int | None:
        raw = self.read_raw()
        if raw is None:
            return None
        return _to_int(raw.strip())

    def publish(self, port: int) -> bool:
        """Write *port* if it differs from the current value."""
        value = str(port)
        if self._environ.get(self.var) == value:
            return False
        self._environ[self.var] = value
        self.writes += 1
        return True


_DECIMAL = re.compile(r"[+-]?[0-9]+")


def _to_int(text: str) -> int | None:
    # Plain ASCII decimal only; int() would also take "3_000" and non-ASCII digits.
    if _DECIMAL.fullmatch(text) is None:
        return None
    return int(text)


def parse_port(raw: str | None, *, source: str, log: Any) -> int | None:
    """Parse a port candidate. Unparsable input is logged and returns None."""
    if raw is None:
        return None
    text = raw.strip()
    port = _to_int(text)
    if port is None:
        log.debug("port_parse_failed", source=source, value=text)
    return port


def _read_port_entry(bundle: ResourceBundle, *, log: Any) -> str | None:
    try:
        return bundle.read_text(PORT_ENTRY)
    except UnicodeDecodeError as exc:
        log.debug("port_parse_failed", source="bundle", error=str(exc))
        return None


def _usable_port(raw: str | None, *, source: str, log: Any) -> int | None:
    """Parse and range-check; anything unusable counts as absent."""
    port = parse_port(raw, source=source, log=log)
    if port is not None and not port_in_range(port):
        log.debug("port_out_of_range", source=source, port=port)
        return None
    return port


# Thread-local storage for sources during construction.
_tls = threading.local()


class HandoffSettingsSource(PydanticBaseSettingsSource):
    """Read the raw port from the :class:`PortHandoff` channel."""

    def __init__(self, settings_cls: type[BaseSettings], handoff: PortHandoff | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        raw = handoff.read_raw() if handoff is not None else None
        if raw is not None:
            self._data["port"] = raw

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(value, field_name, value_is_complex)``."""
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return self._data


class BundleSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a resource bundle.

    ``daemon`` and ``quiet`` are presence-only entries; ``port`` is kept only
    when it parses and lies in range.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        bundle: ResourceBundle | None,
        log: Any = None,
    ) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if bundle is None:
            return
        log = log or get_diagnostics()
        if bundle.exists(PORT_ENTRY):
            raw = _read_port_entry(bundle, log=log)
            port = _usable_port(raw, source="bundle", log=log)
            if port is not None:
                self._data["port"] = port
        self._data["daemonize"] = bundle.exists(DAEMON_ENTRY)
        self._data["quiet"] = bundle.exists(QUIET_ENTRY)

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(value, field_name, value_is_complex)``."""
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return self._data


class UnbundledSettings(BaseSettings):
    """Raw port candidate for unbundled mode: explicit flag over handoff channel."""

    model_config = {"frozen": True}

    port: str | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Replace the stock env source with the handoff channel."""
        return (
            init_settings,
            HandoffSettingsSource(settings_cls, getattr(_tls, "handoff", None)),
        )

    @classmethod
    def from_cli(
        cls, *, flag_port: int = 0, handoff: PortHandoff | None = None
    ) -> UnbundledSettings:
        """The flag only counts when it is greater than zero."""
        init: dict[str, Any] = {}
        if flag_port > 0:
            init["port"] = str(flag_port)
        _tls.handoff = handoff
        try:
            return cls(**init)
        finally:
            _tls.handoff = None


class BundledSettings(BaseSettings):
    """Settings for bundled mode; the environment is never consulted."""

    model_config = {"frozen": True}

    port: int = BUNDLED_DEFAULT_PORT
    daemonize: bool = False
    quiet: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert the bundle source between init kwargs and defaults."""
        return (
            init_settings,
            BundleSettingsSource(
                settings_cls,
                getattr(_tls, "bundle", None),
                getattr(_tls, "log", None),
            ),
        )

    @classmethod
    def from_cli(
        cls,
        bundle: ResourceBundle,
        *,
        port_arg: str | None = None,
        log: Any = None,
    ) -> BundledSettings:
        """Merge the positional port argument over the bundle contents."""
        log = log or get_diagnostics()
        init: dict[str, Any] = {}
        port = _usable_port(port_arg, source="argument", log=log)
        if port is not None:
            init["port"] = port
        _tls.bundle = bundle
        _tls.log = log
        try:
            return cls(**init)
        finally:
            _tls.bundle = None
            _tls.log = None


def resolve_unbundled(
    *,
    flag_port: int = 0,
    daemonize: bool = False,
    quiet: bool = False,
    handoff: PortHandoff | None = None,
    log: Any = None,
) -> EffectiveConfig:
    """Resolve the effective config when no bundle is present.

    The resolved port is published back through *handoff* so the start
    closure, possibly running after a detach, sees the same value.
    """
    log = log or get_diagnostics(quiet=quiet)
    handoff = handoff if handoff is not None else PortHandoff()

    settings = UnbundledSettings.from_cli(flag_port=flag_port, handoff=handoff)
    candidate = parse_port(settings.port, source="flag_or_env", log=log)
    if candidate is None or not port_in_range(candidate):
        port = DEFAULT_PORT
    else:
        port = candidate

    handoff.publish(port)
    log.debug("config_resolved", mode="unbundled", port=port, daemonize=daemonize)
    return EffectiveConfig(port=port, daemonize=daemonize, quiet=quiet, bundled=False)


def resolve_bundled(
    bundle: ResourceBundle,
    *,
    port_arg: str | None = None,
    log: Any = None,
) -> EffectiveConfig:
    """Resolve the effective config from a resource bundle."""
    log = log or get_diagnostics()
    settings = BundledSettings.from_cli(bundle, port_arg=port_arg, log=log)
    log.debug(
        "config_resolved",
        mode="bundled",
        port=settings.port,
        daemonize=settings.daemonize,
        quiet=settings.quiet,
    )
    return EffectiveConfig(
        port=settings.port,
        daemonize=settings.daemonize,
        quiet=settings.quiet,
        bundled=True,
    )
