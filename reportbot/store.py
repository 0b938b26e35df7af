# -*- coding: utf-8 -*-
"""Key-value store behind the bot's short-lived state.

The state manager only talks to :class:`KeyValueStore`, so the in-memory
implementation can be replaced by a persistent one without touching it.
"""

# --- IMPORTS ---
from abc import ABC, abstractmethod
from typing import Any, Iterator


class KeyValueStore(ABC):
    """Minimal mapping interface with prefix iteration."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Returns the value stored under `key` or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Stores `value` under `key`, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> Any | None:
        """Removes `key` and returns the removed value (None if absent)."""

    @abstractmethod
    def items(self, prefix: str = "") -> Iterator[tuple[str, Any]]:
        """Iterates over (key, value) pairs whose key starts with `prefix`."""


class InMemoryStore(KeyValueStore):
    """Process-local store; contents are lost on restart."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def get(self, key):
        return self._data.get(key)

    def set(self, key, value):
        self._data[key] = value

    def delete(self, key):
        return self._data.pop(key, None)

    def items(self, prefix=""):
        # Snapshot so callers may delete while iterating.
        return iter([(k, v) for k, v in self._data.items() if k.startswith(prefix)])

    def __len__(self):
        return len(self._data)
