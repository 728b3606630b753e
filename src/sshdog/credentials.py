"""Credential bootstrap — host identity keys and authorized peer keys.

Two mutually exclusive sources:

* bundle — host-key entries (tried in a fixed order) and an
  ``authorized_keys`` entry inside the resource bundle
* home — ``~/.ssh/id_rsa`` for identity, then the first of
  ``~/.ssh/authorized_keys`` / ``~/.ssh/id_rsa.pub`` for peers

Both fall back to a freshly generated Ed25519 host key when no identity
can be loaded.  Missing peer keys are fatal for the start attempt and raise
:class:`CredentialError`; nothing here terminates the process.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.types import (
    PrivateKeyTypes,
    PublicKeyTypes,
)

from sshdog.config.discovery import ResourceBundle
from sshdog.config.models import AUTHORIZED_KEYS_ENTRY, HOST_KEY_ENTRIES

# Leading token of the key-type field in an authorized_keys record.
_KEY_TYPE_PREFIXES = ("ssh-", "ecdsa-sha2-", "sk-")

_KEY_ERRORS = (ValueError, TypeError, UnsupportedAlgorithm)

# (label, loader) — the loader returns None when the source does not exist.
Candidate = tuple[str, Callable[[], "bytes | None"]]


class CredentialError(RuntimeError):
    """No usable host identity or no authorized peer keys."""


@dataclass(frozen=True)
class CredentialSet:
    """Host identity keys and authorized peer keys for one start attempt."""

    host_keys: tuple[PrivateKeyTypes, ...]
    authorized_keys: tuple[PublicKeyTypes, ...]

    def __post_init__(self) -> None:
        if not self.host_keys:
            msg = "at least one host key is required"
            raise CredentialError(msg)
        if not self.authorized_keys:
            msg = "at least one authorized key is required"
            raise CredentialError(msg)


# ---------------------------------------------------------------------------
# Key parsing
# ---------------------------------------------------------------------------


def load_host_key(data: bytes) -> PrivateKeyTypes:
    """Parse an OpenSSH or PEM private key (unencrypted)."""
    try:
        return serialization.load_ssh_private_key(data, password=None)
    except _KEY_ERRORS:
        return serialization.load_pem_private_key(data, password=None)


def generate_host_key() -> PrivateKeyTypes:
    return Ed25519PrivateKey.generate()


def _key_record(line: str) -> bytes | None:
    """Strip authorized_keys options, keeping ``<type> <base64>``."""
    tokens = line.split()
    for i, token in enumerate(tokens[:-1]):
        if token.startswith(_KEY_TYPE_PREFIXES):
            return f"{token} {tokens[i + 1]}".encode()
    return None


def parse_authorized_keys(data: bytes, *, log: Any) -> list[PublicKeyTypes]:
    """Parse every usable public key in an authorized_keys blob.

    Blank lines and ``#`` comments are skipped; bad records are logged.
    """
    keys: list[PublicKeyTypes] = []
    for lineno, raw in enumerate(data.decode("utf-8", errors="replace").splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        record = _key_record(line)
        if record is None:
            log.debug("authorized_key_unrecognized", line=lineno)
            continue
        try:
            keys.append(serialization.load_ssh_public_key(record))
        except _KEY_ERRORS as exc:
            log.debug("authorized_key_invalid", line=lineno, error=str(exc))
    return keys


# ---------------------------------------------------------------------------
# Candidate sources
# ---------------------------------------------------------------------------


def _read_entry(bundle: ResourceBundle, name: str) -> bytes | None:
    if not bundle.exists(name):
        return None
    return bundle.read_bytes(name)


def _read_path(path: Path) -> bytes | None:
    if not path.is_file():
        return None
    return path.read_bytes()


def bundle_candidates(bundle: ResourceBundle, names: Sequence[str]) -> list[Candidate]:
    return [(name, partial(_read_entry, bundle, name)) for name in names]


def path_candidates(paths: Sequence[Path]) -> list[Candidate]:
    return [(str(path), partial(_read_path, path)) for path in paths]


def _load(candidate: Candidate, *, log: Any) -> bytes | None:
    label, loader = candidate
    try:
        return loader()
    except OSError as exc:
        log.debug("credential_read_failed", source=label, error=str(exc))
        return None


def collect_host_keys(candidates: Sequence[Candidate], *, log: Any) -> list[PrivateKeyTypes]:
    """Load every present candidate; a parse failure skips that candidate only."""
    keys: list[PrivateKeyTypes] = []
    for candidate in candidates:
        label = candidate[0]
        data = _load(candidate, log=log)
        if data is None:
            continue
        log.debug("hostkey_adding", source=label)
        try:
            keys.append(load_host_key(data))
        except _KEY_ERRORS as exc:
            log.debug("hostkey_add_failed", source=label, error=str(exc))
    return keys


def random_host_key(*, log: Any) -> PrivateKeyTypes:
    log.debug("hostkey_generating")
    try:
        return generate_host_key()
    except (UnsupportedAlgorithm, ValueError) as exc:
        msg = f"could not generate a random host key: {exc}"
        raise CredentialError(msg) from exc


def first_authorized_keys(
    candidates: Sequence[Candidate], *, log: Any
) -> tuple[str, list[PublicKeyTypes]]:
    """Use the first candidate that exists, wholesale.

    Raises :class:`CredentialError` when none exists or the one found holds
    no usable key.
    """
    for candidate in candidates:
        label = candidate[0]
        data = _load(candidate, log=log)
        if data is None:
            continue
        log.debug("authorized_keys_adding", source=label)
        keys = parse_authorized_keys(data, log=log)
        if not keys:
            msg = f"no usable authorized keys in {label}"
            raise CredentialError(msg)
        return label, keys
    tried = ", ".join(label for label, _ in candidates)
    msg = f"no authorized keys found (tried {tried})"
    raise CredentialError(msg)


def _resolve(
    host_candidates: Sequence[Candidate],
    peer_candidates: Sequence[Candidate],
    *,
    log: Any,
) -> CredentialSet:
    host_keys = collect_host_keys(host_candidates, log=log)
    if not host_keys:
        host_keys = [random_host_key(log=log)]
    _, peers = first_authorized_keys(peer_candidates, log=log)
    return CredentialSet(host_keys=tuple(host_keys), authorized_keys=tuple(peers))


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def bootstrap_from_bundle(
    bundle: ResourceBundle,
    *,
    log: Any,
    host_key_names: Sequence[str] = HOST_KEY_ENTRIES,
) -> CredentialSet:
    """Resolve credentials from bundle entries."""
    return _resolve(
        bundle_candidates(bundle, host_key_names),
        bundle_candidates(bundle, [AUTHORIZED_KEYS_ENTRY]),
        log=log,
    )


def bootstrap_from_home(home: Path | None = None, *, log: Any) -> CredentialSet:
    """Resolve credentials from the invoking user's ``~/.ssh`` directory."""
    ssh_dir = (home or Path.home()) / ".ssh"
    return _resolve(
        path_candidates([ssh_dir / "id_rsa"]),
        path_candidates([ssh_dir / "authorized_keys", ssh_dir / "id_rsa.pub"]),
        log=log,
    )
