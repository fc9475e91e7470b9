"""
auth/permissions.py -- Hierarchical path-prefix role authorization.

A ProtectedPathTable maps a path prefix ("/api/v1/admin") to the roles allowed
at that prefix and everything beneath it. is_permitted() walks a request path
from the root and checks every protected ancestor on the way down -- failing
any single gate denies, even if a deeper or shallower gate would allow.

Concurrency:
  The table is read on every guarded request and changed rarely, if ever.
  It holds an immutable snapshot (a MappingProxyType over frozensets);
  reload() builds a new snapshot and swaps the reference under a lock.
  Readers take the reference once per walk and never lock, so a concurrent
  reload is seen either entirely or not at all.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from types import MappingProxyType


def _normalize_prefix(prefix: str) -> str:
    parts = [p for p in prefix.split("/") if p]
    if not parts:
        raise ValueError("The root path '/' is always unprotected and cannot carry roles")
    return "/" + "/".join(parts)


def _freeze(mapping: Mapping[str, Iterable[str]]) -> Mapping[str, frozenset[str]]:
    frozen: dict[str, frozenset[str]] = {}
    for prefix, roles in mapping.items():
        key = _normalize_prefix(prefix)
        frozen[key] = frozen.get(key, frozenset()) | frozenset(roles)
    return MappingProxyType(frozen)


class ProtectedPathTable:
    """Copy-on-write mapping of protected path prefix -> allowed role names.

    Usage:
        table = ProtectedPathTable({"/admin": ["admin"]})
        table.lookup("/admin")        # frozenset({"admin"})
        table.lookup("/public")       # None -- unprotected
        table.reload({"/admin": ["admin", "ops"]})
    """

    def __init__(self, mapping: Mapping[str, Iterable[str]] | None = None) -> None:
        self._write_lock = threading.Lock()
        self._snapshot: Mapping[str, frozenset[str]] = _freeze(mapping or {})

    def lookup(self, prefix: str) -> frozenset[str] | None:
        return self._snapshot.get(prefix)

    def snapshot(self) -> Mapping[str, frozenset[str]]:
        """Return the current immutable snapshot. Safe to hold across a reload."""
        return self._snapshot

    def reload(self, mapping: Mapping[str, Iterable[str]]) -> None:
        """Replace the whole table. Raises ValueError on a root entry, leaving the old table in place."""
        fresh = _freeze(mapping)
        with self._write_lock:
            self._snapshot = fresh

    def __len__(self) -> int:
        return len(self._snapshot)


def is_permitted(roles: Iterable[str], path: str, table: ProtectedPathTable) -> bool:
    """Return True if roles satisfy every protected prefix of path.

    Walks "/a", "/a/b", "/a/b/c" ... in order. Empty components (from "//"
    or a trailing "/") are skipped, so "/" itself is never looked up.
    An empty role set fails the first protected prefix it meets.
    """
    snapshot = table.snapshot()
    if not snapshot:
        return True
    held = frozenset(roles)
    prefix = ""
    for part in path.split("/"):
        if not part:
            continue
        prefix = f"{prefix}/{part}"
        allowed = snapshot.get(prefix)
        if allowed is not None and held.isdisjoint(allowed):
            return False
    return True
