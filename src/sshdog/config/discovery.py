"""Resource bundle discovery and loading.

A bundle is a named collection of byte blobs (``port``, ``daemon``,
``authorized_keys``, host keys, ...). It can ship in three places, tried
in a fixed order:

1. appended — a zip archive appended to the running executable
   (a zipapp, or a binary with a zip concatenated to it)
2. embedded — package data placed under ``sshdog/_embedded/`` at build time
3. working directory — a ``config/`` directory or ``config.zip`` archive
   in the current working directory

The first location that yields a bundle wins.
"""

from __future__ import annotations

import sys
import zipfile
from collections.abc import Callable
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

from sshdog.config.models import BUNDLE_NAME

EMBEDDED_DIR = "_embedded"


class BundleNotFoundError(LookupError):
    """No locate strategy produced a bundle."""


class ResourceNotFoundError(KeyError):
    """The bundle has no entry with the requested name."""


class ResourceBundle:
    """Read-only view over a bundle root.

    *root* is any :class:`~importlib.resources.abc.Traversable`: a
    :class:`pathlib.Path` directory or a :class:`zipfile.Path` inside an
    archive. The root never changes once the bundle is created.
    """

    def __init__(self, root: Traversable, source: str) -> None:
        self._root = root
        self.source = source

    def __repr__(self) -> str:
        return f"ResourceBundle(source={self.source!r}, root={str(self._root)!r})"

    def exists(self, name: str) -> bool:
        """Presence check only; content is never inspected."""
        return (self._root / name).is_file()

    def read_bytes(self, name: str) -> bytes:
        entry = self._root / name
        if not entry.is_file():
            raise ResourceNotFoundError(name)
        return entry.read_bytes()

    def read_text(self, name: str, encoding: str = "utf-8") -> str:
        return self.read_bytes(name).decode(encoding)


LocateStrategy = Callable[[str], ResourceBundle | None]


def _is_dir(root: Traversable) -> bool:
    # zipfile.Path.is_dir() only looks at the trailing slash, not the archive.
    if isinstance(root, zipfile.Path):
        return root.exists() and root.is_dir()
    return root.is_dir()


def locate_appended(name: str, executable: Path | None = None) -> ResourceBundle | None:
    """Find *name*/ inside a zip archive appended to the executable.

    ``zipfile`` locates the central directory from the end of the file, so
    arbitrary data (an interpreter stub, a shebang) may precede the archive.
    """
    exe = executable or Path(sys.argv[0])
    if not exe.is_file() or not zipfile.is_zipfile(exe):
        return None
    root = zipfile.Path(exe, at=f"{name}/")
    if not _is_dir(root):
        return None
    return ResourceBundle(root, "appended")


def locate_embedded(name: str, package: str = "sshdog") -> ResourceBundle | None:
    """Find *name* in package data embedded at build time."""
    root = resources.files(package) / EMBEDDED_DIR / name
    if not _is_dir(root):
        return None
    return ResourceBundle(root, "embedded")


def locate_working_directory(name: str, cwd: Path | None = None) -> ResourceBundle | None:
    """Find a *name* directory, or a *name*.zip archive, in *cwd*."""
    base = (cwd or Path.cwd()).resolve()
    directory = base / name
    if directory.is_dir():
        return ResourceBundle(directory, "working_directory")
    archive = base / f"{name}.zip"
    if archive.is_file() and zipfile.is_zipfile(archive):
        return ResourceBundle(zipfile.Path(archive), "working_directory")
    return None


LOCATE_ORDER: tuple[LocateStrategy, ...] = (
    locate_appended,
    locate_embedded,
    locate_working_directory,
)


def find_bundle(
    name: str = BUNDLE_NAME,
    *,
    strategies: tuple[LocateStrategy, ...] = LOCATE_ORDER,
    log: Any = None,
) -> ResourceBundle | None:
    """Try each strategy in order; return the first bundle found, else None.

    A strategy that fails with an I/O or archive error counts as "not found"
    for that strategy only.
    """
    for strategy in strategies:
        try:
            bundle = strategy(name)
        except (OSError, zipfile.BadZipFile) as exc:
            if log is not None:
                log.debug("bundle_locate_failed", strategy=strategy.__name__, error=str(exc))
            continue
        if bundle is not None:
            if log is not None:
                log.debug("bundle_found", name=name, source=bundle.source)
            return bundle
    return None


def require_bundle(
    name: str = BUNDLE_NAME,
    *,
    strategies: tuple[LocateStrategy, ...] = LOCATE_ORDER,
    log: Any = None,
) -> ResourceBundle:
    """Like :func:`find_bundle`, but absence raises :class:`BundleNotFoundError`."""
    bundle = find_bundle(name, strategies=strategies, log=log)
    if bundle is None:
        msg = f"Resource bundle {name!r} not found (tried appended, embedded, working directory)"
        raise BundleNotFoundError(msg)
    return bundle


def detect_bundled_mode(cwd: Path | None = None) -> bool:
    """Bundled mode is selected when a ``config`` path exists in *cwd*."""
    return ((cwd or Path.cwd()) / BUNDLE_NAME).exists()
