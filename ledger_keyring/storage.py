"""
Keyring Storage — pluggable persistence for the user and token tables.

Stores keep their whole table in memory and hand a complete snapshot to a
``StorageBackend`` on every mutation. ``JSONFileStorage`` rewrites one JSON
document atomically (temp file, fsync, rename) with owner-only permissions.
Other backends (append-only, transactional) can replace it without touching
store logic.

Security Note:
    Table files hold password hashes and encrypted tokens. They are always
    created with mode 0600 inside a 0700 directory.
"""
import os
import asyncio
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import orjson

from .exceptions import ConfigurationError, StorageError

logger = logging.getLogger("ledger.keyring")

FILE_MODE = 0o600
DIR_MODE = 0o700


def resolve_within(base_dir: str | Path, path: str | Path) -> Path:
    """Resolve ``path`` against ``base_dir`` and keep it inside.

    Args:
        base_dir: Trusted base directory.
        path: Configured path, relative to ``base_dir`` or absolute.

    Returns:
        Absolute, resolved path located inside ``base_dir``.

    Raises:
        ConfigurationError: If the path contains a NUL byte, a ``..``
            component, or resolves outside ``base_dir``.
    """
    raw = os.fspath(path)
    if "\x00" in raw or "\x00" in os.fspath(base_dir):
        raise ConfigurationError("Path contains a null byte")
    if ".." in Path(raw).parts or ".." in raw.replace("\\", "/").split("/"):
        raise ConfigurationError(f"Path traversal is not allowed: {raw!r}")
    base = Path(base_dir).resolve()
    candidate = Path(raw)
    if not candidate.is_absolute():
        candidate = base / candidate
    resolved = candidate.resolve()
    if resolved != base and not resolved.is_relative_to(base):
        raise ConfigurationError(
            f"Path {raw!r} resolves outside of base directory {str(base)!r}"
        )
    return resolved


class StorageBackend(ABC):
    """Persistence for one store's complete table."""

    @abstractmethod
    async def load(self) -> dict[str, Any]:
        """
        Read the last durable snapshot.

        Returns:
            The table, or an empty dict if nothing was ever saved.

        Raises:
            StorageError: If the snapshot exists but cannot be read.
        """

    @abstractmethod
    async def save(self, data: dict[str, Any]) -> None:
        """
        Durably replace the snapshot with ``data``.

        Returns only once the write reached storage.

        Raises:
            StorageError: If the write fails.
        """


class MemoryStorage(StorageBackend):
    """Non-durable backend, used for ephemeral runs and tests."""

    def __init__(self, data: dict[str, Any] | None = None):
        self._blob = orjson.dumps(data or {})
        self.saves = 0

    async def load(self) -> dict[str, Any]:
        return orjson.loads(self._blob)

    async def save(self, data: dict[str, Any]) -> None:
        self._blob = orjson.dumps(data)
        self.saves += 1


class JSONFileStorage(StorageBackend):
    """One JSON document per store, rewritten atomically on every save."""

    def __init__(self, path: str | Path, base_dir: str | Path | None = None):
        if base_dir is not None:
            path = resolve_within(base_dir, path)
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"<JSONFileStorage path={str(self.path)!r}>"

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        raw = self.path.read_bytes()
        if not raw.strip():
            return {}
        data = orjson.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(
                f"expected a JSON object, got {type(data).__name__}"
            )
        return data

    def _write(self, payload: bytes) -> None:
        directory = self.path.parent
        directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=directory, prefix=f".{self.path.name}.", suffix=".tmp",
        )
        try:
            os.fchmod(fd, FILE_MODE)
            with os.fdopen(fd, "wb") as fp:
                fp.write(payload)
                fp.flush()
                os.fsync(fp.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        os.chmod(self.path, FILE_MODE)

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def load(self) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._read)
        except (OSError, ValueError) as err:
            # orjson.JSONDecodeError is a ValueError
            raise StorageError(
                f"Cannot read {self.path}: {type(err).__name__}"
            ) from err

    async def save(self, data: dict[str, Any]) -> None:
        try:
            payload = orjson.dumps(
                data, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS,
            )
        except TypeError as err:
            raise StorageError(f"Cannot serialize table for {self.path}") from err
        try:
            await asyncio.to_thread(self._write, payload)
        except OSError as err:
            raise StorageError(
                f"Cannot write {self.path}: {err.strerror or type(err).__name__}"
            ) from err
        logger.debug("Persisted %d record(s) to %s", len(data), self.path)
