"""Key/value storage capability shared by the persistence-backed components.

Components depend only on :class:`StorageBackend`; the concrete backend is
selected from settings by :func:`build_default_storage`.
"""

from __future__ import annotations

import copy
import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from settings import get_settings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when a backend cannot complete a write or delete."""


@runtime_checkable
class StorageBackend(Protocol):
    name: str

    def read(self, key: str) -> Optional[Any]:
        """Return the stored document for ``key`` or ``None``."""

    def write(self, key: str, data: Any) -> None:
        """Store ``data`` (JSON-compatible) under ``key``."""

    def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is a no-op."""


class MemoryStorage:
    """Process-local backend; documents are deep-copied in and out."""

    name = "memory"

    def __init__(self) -> None:
        self._documents: Dict[str, Any] = {}
        self._lock = Lock()

    def read(self, key: str) -> Optional[Any]:
        with self._lock:
            if key not in self._documents:
                return None
            return copy.deepcopy(self._documents[key])

    def write(self, key: str, data: Any) -> None:
        with self._lock:
            self._documents[key] = copy.deepcopy(data)

    def delete(self, key: str) -> None:
        with self._lock:
            self._documents.pop(key, None)


class FileStorage:
    """One pretty-printed JSON document per key under ``root_path``."""

    name = "file"

    def __init__(self, root_path: Path) -> None:
        self.root_path = root_path
        self._lock = Lock()

    def read(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as exc:
                logger.warning(
                    "Unable to read stored document",
                    extra={"storage_key": key, "reason": str(exc)},
                )
                return None
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(
                "Ignoring malformed stored document",
                extra={"storage_key": key, "reason": "invalid json"},
            )
            return None

    def write(self, key: str, data: Any) -> None:
        path = self._path_for(key)
        serialized = json.dumps(data, indent=2, sort_keys=True)
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(serialized, encoding="utf-8")
            except OSError as exc:
                raise StorageError(f"Unable to write {key!r} to {path}") from exc

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Unable to delete {key!r} at {path}") from exc

    def _path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid storage key {key!r}.")
        return self.root_path / f"{key}.json"


@lru_cache
def build_default_storage(
    backend: Optional[str] = None,
    root_path: Optional[str] = None,
) -> StorageBackend:
    settings = get_settings()
    selected = settings.storage_backend if backend is None else backend
    root = settings.storage_root_path if root_path is None else root_path
    if selected == "memory" or not root:
        return MemoryStorage()
    return FileStorage(root_path=Path(root))
