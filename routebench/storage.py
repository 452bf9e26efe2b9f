"""
Key-value stores for credentials, custom suites and run history.
"""

import json
import logging
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any, Optional, Protocol

from routebench.models import RunResult
from routebench.utils import load_results, save_results

logger = logging.getLogger(__name__)

HISTORY_KEY = "routebench.history"


class KeyValueStore(Protocol):
    """Opaque scoped storage supplied by the host."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def update(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store; values are copied in and out."""

    def __init__(self, initial: Optional[dict] = None):
        self._data = deepcopy(initial) if initial else {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return deepcopy(self._data[key])

    def update(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class JsonFileStore:
    """Store persisted as one JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = load_results(self.path)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Unreadable store %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read().get(key, default)

    def update(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            save_results(data, self.path)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                save_results(data, self.path)


class RunHistory:
    """
    Newest-first history of single runs.

    Recording is skipped while saving is disabled, and the list is trimmed
    to max_items (at least one).
    """

    def __init__(
        self,
        store: KeyValueStore,
        save_enabled: bool = True,
        max_items: int = 100,
    ):
        self.store = store
        self.save_enabled = save_enabled
        self.max_items = max(1, max_items)

    def entries(self) -> list[RunResult]:
        return [RunResult.from_dict(item) for item in self.store.get(HISTORY_KEY, [])]

    def record(self, result: RunResult) -> None:
        if not self.save_enabled:
            return
        items = self.store.get(HISTORY_KEY, [])
        items.insert(0, result.to_dict())
        self.store.update(HISTORY_KEY, items[: self.max_items])

    def clear(self) -> None:
        self.store.update(HISTORY_KEY, [])

    def apply_settings(self, save_enabled: bool, max_items: int) -> list[RunResult]:
        """Re-apply retention settings; disabling saving clears history."""
        self.save_enabled = save_enabled
        self.max_items = max(1, max_items)

        if not save_enabled:
            self.clear()
            return []

        items = self.store.get(HISTORY_KEY, [])
        if len(items) > self.max_items:
            self.store.update(HISTORY_KEY, items[: self.max_items])
        return self.entries()
