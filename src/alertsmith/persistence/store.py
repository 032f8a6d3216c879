"""Key-value stores for data extensions ask to persist.

Records are keyed by extension name. Values must be JSON serializable.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class PersistenceStore(ABC):
    """Abstract port for per-extension persisted records."""

    @abstractmethod
    def get(self, name: str) -> Any | None:
        """Get the record of an extension.

        Args:
            name: Extension name.

        Returns:
            Stored value or None if there is no record.
        """
        ...

    @abstractmethod
    def upsert(self, name: str, value: Any) -> None:
        """Create or replace the record of an extension."""
        ...

    @abstractmethod
    def clear(self, name: str) -> None:
        """Remove the record of an extension, if any."""
        ...

    @abstractmethod
    def names(self) -> list[str]:
        """Names of all extensions with a record."""
        ...

    def read_all(self) -> dict[str, Any]:
        return {name: self.get(name) for name in self.names()}


class MemoryStore(PersistenceStore):
    """In-memory store, used in tests and for one-shot runs."""

    def __init__(self) -> None:
        self._records: dict[str, Any] = {}

    def get(self, name: str) -> Any | None:
        return copy.deepcopy(self._records.get(name))

    def upsert(self, name: str, value: Any) -> None:
        self._records[name] = copy.deepcopy(value)

    def clear(self, name: str) -> None:
        self._records.pop(name, None)

    def names(self) -> list[str]:
        return sorted(self._records)


class JsonFileStore(PersistenceStore):
    """Store keeping every record in a single JSON document.

    The file is rewritten atomically (write to a temporary sibling, then
    rename) on every change and created on first write.

    Attributes:
        path: Location of the JSON document.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        tmp_path.replace(self.path)

    def get(self, name: str) -> Any | None:
        with self._lock:
            return self._read().get(name)

    def upsert(self, name: str, value: Any) -> None:
        # Serialize first so an unserializable value never corrupts the file.
        encoded = json.loads(json.dumps(value))
        with self._lock:
            data = self._read()
            data[name] = encoded
            self._write(data)
        logger.debug(f"Persisted record for {name} in {self.path}")

    def clear(self, name: str) -> None:
        with self._lock:
            data = self._read()
            if name not in data:
                return
            del data[name]
            self._write(data)
        logger.debug(f"Cleared record for {name} in {self.path}")

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._read())
