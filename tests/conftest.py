"""Shared pytest fixtures for sshdog tests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
import structlog
from click.testing import CliRunner
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from sshdog.config.discovery import ResourceBundle
from sshdog.config.models import PORT_ENV_VAR


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """No test inherits a port from the developer's shell, or leaks one."""
    # setenv first so teardown also removes values the code under test writes.
    monkeypatch.setenv(PORT_ENV_VAR, "")
    monkeypatch.delenv(PORT_ENV_VAR)


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    """Restore root and sshdog logger state after each test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    sshdog = logging.getLogger("sshdog")
    sshdog_level = sshdog.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    sshdog.setLevel(sshdog_level)
    structlog.reset_defaults()


@pytest.fixture
def log() -> structlog.stdlib.BoundLogger:
    """Diagnostics sink for components under test."""
    return structlog.get_logger("sshdog.test")


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def openssh_host_key() -> bytes:
    """Unencrypted Ed25519 private key in OpenSSH format."""
    key = Ed25519PrivateKey.generate()
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def pem_rsa_host_key() -> bytes:
    """Traditional ``BEGIN RSA PRIVATE KEY`` PEM, as in a classic ~/.ssh/id_rsa."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def peer_key_line() -> bytes:
    """One authorized_keys record with a trailing comment."""
    public = Ed25519PrivateKey.generate().public_key()
    encoded = public.public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    return encoded + b" peer@example\n"


# ---------------------------------------------------------------------------
# Filesystem layouts
# ---------------------------------------------------------------------------


@pytest.fixture
def make_home(tmp_path: Path) -> Callable[..., Path]:
    """Factory for a fake home directory with selected ``~/.ssh`` files."""

    def _make(**files: bytes) -> Path:
        home = tmp_path / "home"
        ssh_dir = home / ".ssh"
        ssh_dir.mkdir(parents=True, exist_ok=True)
        for name, data in files.items():
            (ssh_dir / name.replace("_pub", ".pub")).write_bytes(data)
        return home

    return _make


@pytest.fixture
def make_bundle(tmp_path: Path) -> Callable[..., ResourceBundle]:
    """Factory for a directory-backed bundle holding the given entries."""

    def _make(**entries: bytes | str) -> ResourceBundle:
        root = tmp_path / "bundle" / "config"
        root.mkdir(parents=True, exist_ok=True)
        for name, data in entries.items():
            path = root / name
            if isinstance(data, str):
                path.write_text(data, encoding="utf-8")
            else:
                path.write_bytes(data)
        return ResourceBundle(root, "test")

    return _make
