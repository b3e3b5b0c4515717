"""Durable key/value storage standing in for the browser's ``localStorage``.

Each browser is addressed by an opaque id (a cookie value) and owns one
*namespace*: a flat ``str -> str`` mapping. Key names inside a namespace are
the ones the web client has always used (``palm_reader.auth.code_verifier``,
``passwordResetInfo``, ...), so the verifier repository can reason about them
exactly like a browser page would.

Two implementations are provided:

* :class:`MemoryStorage` - process-local, used by tests and as the default
  for throw-away contexts.
* :class:`DiskStorage` - one JSON file per namespace.

DiskStorage design:

* **Atomicity** – writes use *temp-file + os.replace*; multi-key updates go
  through :meth:`DiskStorage.set_items` so either all keys land or none.
* **Concurrency** – read-modify-write cycles hold an advisory ``O_EXCL`` lock
  file per namespace.
* **Filename safety** – namespace ids are hashed before hitting the
  filesystem.

Environment variables
---------------------
PALM_INSIGHT_STORAGE_DIR
    Base directory for all persisted data.
    Defaults to ``~/.palm-insight/storage`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Mapping, Protocol, runtime_checkable

_LOG = logging.getLogger("palm-insight.auth.storage")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 16) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


@contextmanager
def _file_lock(lock_path: Path, retries: int = 25, delay: float = 0.02) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class KeyValueStorage(Protocol):
    """Minimal ``localStorage``-like contract."""

    def get_item(self, key: str) -> str | None: ...
    def set_item(self, key: str, value: str) -> None: ...
    def set_items(self, items: Mapping[str, str]) -> None: ...
    def remove_item(self, key: str) -> None: ...
    def remove_items(self, keys: list[str] | tuple[str, ...]) -> None: ...


class MemoryStorage(KeyValueStorage):
    """Dictionary-backed storage."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def set_items(self, items: Mapping[str, str]) -> None:
        self._data.update(items)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def remove_items(self, keys: list[str] | tuple[str, ...]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class DiskStorage(KeyValueStorage):
    """JSON-file implementation of :class:`KeyValueStorage` for one namespace."""

    def __init__(self, base_dir: str | os.PathLike, namespace: str) -> None:
        self.base_dir = Path(base_dir).expanduser()
        self.namespace = namespace
        self.path = self.base_dir / "browsers" / f"{_hash(namespace)}.json"
        self._lock_path = self.path.with_suffix(".lock")

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError:
            _LOG.warning("Discarding unreadable storage file %s", self.path.name)
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _update(self, changes: Mapping[str, str | None]) -> None:
        with _file_lock(self._lock_path):
            data = self._load()
            for key, value in changes.items():
                if value is None:
                    data.pop(key, None)
                else:
                    data[key] = value
            _atomic_write(self.path, data)

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        self._update({key: value})

    def set_items(self, items: Mapping[str, str]) -> None:
        self._update(dict(items))

    def remove_item(self, key: str) -> None:
        self._update({key: None})

    def remove_items(self, keys: list[str] | tuple[str, ...]) -> None:
        self._update({key: None for key in keys})


def default_storage_dir() -> Path:
    """Return the configured storage root (``PALM_INSIGHT_STORAGE_DIR``)."""
    return Path(
        os.getenv("PALM_INSIGHT_STORAGE_DIR") or Path.home() / ".palm-insight" / "storage"
    ).expanduser()
