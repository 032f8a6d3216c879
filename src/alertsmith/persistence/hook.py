"""Persistence side effect applied after every successful invocation."""

from __future__ import annotations

import asyncio
import logging

from alertsmith.errors import ErrorContext, PersistenceError
from alertsmith.persistence.store import PersistenceStore
from alertsmith.sandbox.invocation import InvocationResult

logger = logging.getLogger(__name__)


async def apply_persistence(name: str, result: InvocationResult, store: PersistenceStore) -> None:
    """Record the result's ``db`` value, or drop the record when it has none.

    Args:
        name: Extension name (the record key)
        result: Result of a successful invocation
        store: Persistence store

    Raises:
        PersistenceError: If the store fails to upsert or clear
    """
    try:
        if result.has_db:
            await asyncio.to_thread(store.upsert, name, result.db)
        else:
            await asyncio.to_thread(store.clear, name)
    except Exception as e:
        action = "upsert" if result.has_db else "clear"
        raise PersistenceError(
            f"Failed to {action} persisted data for {name}: {e}",
            context=ErrorContext(extension_name=name),
            cause=e,
        ) from e


async def load_persisted(name: str, store: PersistenceStore) -> object | None:
    """Read an extension's persisted record for its next invocation."""
    try:
        return await asyncio.to_thread(store.get, name)
    except Exception as e:
        raise PersistenceError(
            f"Failed to read persisted data for {name}: {e}",
            context=ErrorContext(extension_name=name),
            cause=e,
        ) from e
