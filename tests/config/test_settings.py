"""Tests for layered settings resolution in both modes."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from sshdog.config.discovery import ResourceBundle
from sshdog.config.models import BUNDLED_DEFAULT_PORT, DEFAULT_PORT, PORT_ENV_VAR
from sshdog.config.settings import (
    BundledSettings,
    PortHandoff,
    UnbundledSettings,
    parse_port,
    resolve_bundled,
    resolve_unbundled,
)

OUT_OF_RANGE = [-5, 1, 22, 1023, 1024, 65535, 65536, 99999]


class TestPortHandoff:
    def test_read_empty(self) -> None:
        assert PortHandoff({}).read() is None

    def test_empty_string_is_unset(self) -> None:
        assert PortHandoff({PORT_ENV_VAR: ""}).read_raw() is None

    def test_read_unparsable(self) -> None:
        assert PortHandoff({PORT_ENV_VAR: "ssh"}).read() is None

    def test_publish_writes_changed_value(self) -> None:
        env: dict[str, str] = {}
        handoff = PortHandoff(env)
        assert handoff.publish(8022) is True
        assert env[PORT_ENV_VAR] == "8022"
        assert handoff.writes == 1

    def test_publish_same_value_is_noop(self) -> None:
        env = {PORT_ENV_VAR: "9000"}
        handoff = PortHandoff(env)
        assert handoff.publish(9000) is False
        assert handoff.writes == 0

    def test_defaults_to_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(PORT_ENV_VAR, "4000")
        assert PortHandoff().read() == 4000


class TestParsePort:
    def test_trims_whitespace(self, log: object) -> None:
        assert parse_port(" 3000\n", source="t", log=log) == 3000

    def test_unparsable_is_none(self, log: object) -> None:
        assert parse_port("three thousand", source="t", log=log) is None

    def test_none_is_none(self, log: object) -> None:
        assert parse_port(None, source="t", log=log) is None

    @pytest.mark.parametrize("raw", ["3_000", "٣٠٠٠", "3000.0", "0x1f40", "+", ""])
    def test_rejects_non_decimal_forms(self, raw: str, log: object) -> None:
        assert parse_port(raw, source="t", log=log) is None

    @pytest.mark.parametrize(("raw", "expected"), [("+3000", 3000), ("-3000", -3000)])
    def test_accepts_sign(self, raw: str, expected: int, log: object) -> None:
        assert parse_port(raw, source="t", log=log) == expected

    def test_handoff_rejects_underscore_digits(self) -> None:
        assert PortHandoff({PORT_ENV_VAR: "3_000"}).read() is None


class TestUnbundledSettings:
    def test_flag_over_handoff(self) -> None:
        handoff = PortHandoff({PORT_ENV_VAR: "9000"})
        settings = UnbundledSettings.from_cli(flag_port=7000, handoff=handoff)
        assert settings.port == "7000"

    def test_zero_flag_defers_to_handoff(self) -> None:
        handoff = PortHandoff({PORT_ENV_VAR: "9000"})
        settings = UnbundledSettings.from_cli(flag_port=0, handoff=handoff)
        assert settings.port == "9000"

    def test_nothing_set(self) -> None:
        assert UnbundledSettings.from_cli(handoff=PortHandoff({})).port is None

    def test_ignores_stock_env_source(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Only the handoff channel is consulted, not os.environ directly."""
        monkeypatch.setenv("PORT", "5555")
        monkeypatch.setenv(PORT_ENV_VAR, "5556")
        assert UnbundledSettings.from_cli(handoff=PortHandoff({})).port is None


class TestResolveUnbundled:
    @pytest.mark.parametrize("port", OUT_OF_RANGE)
    def test_out_of_range_flag_yields_default(self, port: int, log: object) -> None:
        handoff = PortHandoff({PORT_ENV_VAR: "9000"})
        cfg = resolve_unbundled(flag_port=port, handoff=handoff, log=log)
        # A negative flag is "not given", so the env value applies.
        expected = 9000 if port <= 0 else DEFAULT_PORT
        assert cfg.port == expected

    @pytest.mark.parametrize("port", OUT_OF_RANGE)
    def test_out_of_range_env_yields_default(self, port: int, log: object) -> None:
        handoff = PortHandoff({PORT_ENV_VAR: str(port)})
        assert resolve_unbundled(handoff=handoff, log=log).port == DEFAULT_PORT

    @pytest.mark.parametrize("port", [1025, 2022, 40000, 65534])
    def test_in_range_flag_wins_over_env(self, port: int, log: object) -> None:
        handoff = PortHandoff({PORT_ENV_VAR: "9000"})
        assert resolve_unbundled(flag_port=port, handoff=handoff, log=log).port == port

    def test_env_used_without_flag_and_left_unchanged(self, log: object) -> None:
        env = {PORT_ENV_VAR: "9000"}
        handoff = PortHandoff(env)
        cfg = resolve_unbundled(handoff=handoff, log=log)
        assert cfg.port == 9000
        assert env[PORT_ENV_VAR] == "9000"
        assert handoff.writes == 0

    def test_unparsable_env_falls_to_default(self, log: object) -> None:
        env = {PORT_ENV_VAR: "not-a-port"}
        handoff = PortHandoff(env)
        cfg = resolve_unbundled(handoff=handoff, log=log)
        assert cfg.port == DEFAULT_PORT
        assert env[PORT_ENV_VAR] == str(DEFAULT_PORT)
        assert handoff.writes == 1

    def test_underscore_env_falls_to_default(self, log: object) -> None:
        handoff = PortHandoff({PORT_ENV_VAR: "3_000"})
        assert resolve_unbundled(handoff=handoff, log=log).port == DEFAULT_PORT

    def test_resolved_flag_published_to_handoff(self, log: object) -> None:
        env = {PORT_ENV_VAR: "9000"}
        resolve_unbundled(flag_port=7000, handoff=PortHandoff(env), log=log)
        assert env[PORT_ENV_VAR] == "7000"

    def test_nothing_set_yields_default(self, log: object) -> None:
        env: dict[str, str] = {}
        cfg = resolve_unbundled(handoff=PortHandoff(env), log=log)
        assert cfg.port == DEFAULT_PORT
        assert env[PORT_ENV_VAR] == str(DEFAULT_PORT)

    def test_flags_carried_through(self, log: object) -> None:
        cfg = resolve_unbundled(daemonize=True, quiet=True, handoff=PortHandoff({}), log=log)
        assert cfg.daemonize is True
        assert cfg.quiet is True
        assert cfg.bundled is False


class TestResolveBundled:
    def test_bundle_port_with_trailing_whitespace(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        bundle = make_bundle(port="3000\n")
        assert resolve_bundled(bundle, log=log).port == 3000

    def test_no_flags_present(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        cfg = resolve_bundled(make_bundle(), log=log)
        assert cfg.daemonize is False
        assert cfg.quiet is False
        assert cfg.bundled is True

    def test_presence_flags_ignore_content(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        cfg = resolve_bundled(make_bundle(daemon="", quiet="no"), log=log)
        assert cfg.daemonize is True
        assert cfg.quiet is True

    def test_default_port(self, make_bundle: Callable[..., ResourceBundle], log: object) -> None:
        assert resolve_bundled(make_bundle(), log=log).port == BUNDLED_DEFAULT_PORT

    def test_positional_argument_wins(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        bundle = make_bundle(port="3000")
        assert resolve_bundled(bundle, port_arg="4000", log=log).port == 4000

    def test_unparsable_argument_falls_to_bundle(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        bundle = make_bundle(port="3000")
        assert resolve_bundled(bundle, port_arg="-d", log=log).port == 3000

    def test_unparsable_bundle_port_falls_to_default(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        bundle = make_bundle(port="twenty-two")
        assert resolve_bundled(bundle, log=log).port == BUNDLED_DEFAULT_PORT

    def test_undecodable_bundle_port_falls_to_default(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        bundle = make_bundle(port=b"\xff\xfe30")
        assert resolve_bundled(bundle, log=log).port == BUNDLED_DEFAULT_PORT

    def test_non_ascii_digits_fall_through(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        bundle = make_bundle(port="3000")
        assert resolve_bundled(bundle, port_arg="٤٠٠٠", log=log).port == 3000

    def test_out_of_range_candidates_fall_through(
        self, make_bundle: Callable[..., ResourceBundle], log: object
    ) -> None:
        bundle = make_bundle(port="22")
        assert resolve_bundled(bundle, port_arg="80", log=log).port == BUNDLED_DEFAULT_PORT

    def test_environment_is_ignored(
        self,
        make_bundle: Callable[..., ResourceBundle],
        monkeypatch: pytest.MonkeyPatch,
        log: object,
    ) -> None:
        monkeypatch.setenv(PORT_ENV_VAR, "9000")
        monkeypatch.setenv("DAEMONIZE", "true")
        cfg = resolve_bundled(make_bundle(), log=log)
        assert cfg.port == BUNDLED_DEFAULT_PORT
        assert cfg.daemonize is False


class TestBundledSettings:
    def test_frozen(self, make_bundle: Callable[..., ResourceBundle]) -> None:
        settings = BundledSettings.from_cli(make_bundle())
        with pytest.raises(Exception):
            settings.port = 3000  # type: ignore[misc]
