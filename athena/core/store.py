"""Key/value persistence backing the chat collection and preferences.

The store is the local-device equivalent of browser storage:
- values are JSON-serializable,
- ``load`` fails soft and returns the caller's default,
- ``save`` is synchronous and the last writer wins.

Only same-process writers are serialized. Two processes sharing one store
file may overwrite each other; a single running client is assumed.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, TypeVar

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract key/value store."""

    @abstractmethod
    def load(self, key: str, default: T) -> Any | T:
        """Return the last persisted value, or ``default`` when absent or corrupt."""

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Backend type identifier."""


class MemoryStore(KeyValueStore):
    """Process-local store, used for tests and throwaway sessions."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()
        for key, value in (initial or {}).items():
            self.save(key, value)

    def load(self, key: str, default: T) -> Any | T:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            return default

    def save(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._data[key] = encoded

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def put_raw(self, key: str, raw: str) -> None:
        """Store an undecoded string (lets tests simulate corrupt entries)."""
        with self._lock:
            self._data[key] = raw

    @property
    def backend_type(self) -> str:
        return "memory"


class JsonFileStore(KeyValueStore):
    """All keys kept in one JSON document, rewritten atomically on save."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._cache: dict[str, Any] | None = None

    def load(self, key: str, default: T) -> Any | T:
        with self._lock:
            data = self._read()
            if key not in data:
                return default
            return copy.deepcopy(data[key])

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            data = dict(self._read())
            data[key] = json.loads(json.dumps(value, ensure_ascii=False))
            self._write(data)
            self._cache = data

    def delete(self, key: str) -> None:
        with self._lock:
            data = dict(self._read())
            if key in data:
                del data[key]
                self._write(data)
            self._cache = data

    @property
    def backend_type(self) -> str:
        return "json"

    def _read(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache
        data: dict[str, Any] = {}
        if self.path.exists():
            try:
                raw_text = self.path.read_text(encoding="utf-8").lstrip("\ufeff")
                parsed = json.loads(raw_text) if raw_text.strip() else {}
                if isinstance(parsed, dict):
                    data = parsed
                else:
                    LOGGER.warning("Ignoring store %s: top-level value is not an object", self.path)
            except (OSError, ValueError) as exc:
                LOGGER.warning("Ignoring unreadable store %s: %s", self.path, exc)
        self._cache = data
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
