"""Per-extension persisted records."""

from alertsmith.persistence.hook import apply_persistence, load_persisted
from alertsmith.persistence.store import JsonFileStore, MemoryStore, PersistenceStore

__all__ = [
    "JsonFileStore",
    "MemoryStore",
    "PersistenceStore",
    "apply_persistence",
    "load_persisted",
]
