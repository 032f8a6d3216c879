"""Capability whitelist for sandboxed extensions.

The whitelist is a flat, ordered list of capability names. A requested name
is allowed when it equals an entry, or when it is a sub-resource of an entry:
the entry followed by a separator and any suffix. Both ``/`` (path-style
names such as ``fs/promises``) and ``.`` (Python sub-modules such as
``os.path``) are separators.

The whitelist file holds one entry per line; blank lines and ``#`` comments
are ignored. Loading is fail-closed: an unreadable file raises
SourceReadError and nothing is allowed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from alertsmith.sources import read_source

logger = logging.getLogger(__name__)

SEPARATORS = ("/", ".")

DEFAULT_WHITELIST_PATH = Path(__file__).parent / "packages.txt"

Whitelist = tuple[str, ...]


def is_allowed(whitelist: Whitelist | list[str], requested: str) -> bool:
    """Decide whether a capability name may be resolved.

    Args:
        whitelist: Whitelist entries
        requested: Capability name requested by an extension

    Returns:
        True if ``requested`` equals an entry or starts with ``entry + sep``
    """
    for entry in whitelist:
        if requested == entry:
            return True
        if any(requested.startswith(entry + separator) for separator in SEPARATORS):
            return True
    return False


def parse_whitelist(text: str) -> Whitelist:
    """Parse whitelist file content into entries, keeping their order."""
    entries: list[str] = []
    for line in text.splitlines():
        entry = line.split("#", 1)[0].strip()
        if entry and entry not in entries:
            entries.append(entry)
    return tuple(entries)


def load_whitelist(path: str | Path | None = None) -> Whitelist:
    """Read and parse a whitelist file.

    Raises:
        SourceReadError: If the file cannot be read
    """
    path = Path(path) if path else DEFAULT_WHITELIST_PATH
    whitelist = parse_whitelist(read_source(path))
    logger.debug(f"Loaded {len(whitelist)} whitelist entries from {path}")
    return whitelist


_cache: dict[str, Whitelist] = {}
_cache_lock = threading.Lock()


def get_whitelist(path: str | Path | None = None) -> Whitelist:
    """Get the process-wide whitelist for a path, loading it once.

    A failed load is not cached, so a later call retries the read.
    """
    key = str(Path(path) if path else DEFAULT_WHITELIST_PATH)
    with _cache_lock:
        if key not in _cache:
            _cache[key] = load_whitelist(key)
        return _cache[key]


def reset_whitelist() -> None:
    """Forget every cached whitelist."""
    with _cache_lock:
        _cache.clear()
