"""
Key-value stores shared by the vault, envelope, progression gate and test clock.

Two stores model the browser storage the LMS front-end relies on:

- a session-scoped store that lives as long as the process (the "tab")
- a durable store that survives restarts, used to resurrect a session

Durable data is written as a JSON file, e.g. ~/.lms_companion/durable.json
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from loguru import logger


class KeyValueStore(ABC):
    """String-to-string store with the browser Storage API semantics."""

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Return the stored value or None."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every key."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Snapshot of the stored keys."""

    def remove_items(self, keys: list[str] | tuple[str, ...]) -> None:
        for key in keys:
            self.remove_item(key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get_item(key) is not None

    def __len__(self) -> int:
        return len(self.keys())

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())


class MemoryStore(KeyValueStore):
    """
    In-memory store.

    All access goes through one re-entrant lock so the store stays consistent
    when it is shared across threads.
    """

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.RLock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)
            self._changed()

    def remove_item(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._changed()

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._changed()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data.keys())

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._data)

    def _changed(self) -> None:
        """Hook for subclasses; called with the lock held after every mutation."""


class JsonFileStore(MemoryStore):
    """
    MemoryStore persisted to a JSON file after every mutation.

    A missing or corrupted file loads as an empty store.
    """

    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(self._load())

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable store file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _changed(self) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        tmp_path.replace(self.path)


@dataclass
class SessionStores:
    """The session-scoped and durable stores, injected into every component."""

    session: KeyValueStore = field(default_factory=MemoryStore)
    durable: KeyValueStore = field(default_factory=MemoryStore)
