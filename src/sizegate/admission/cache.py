"""Bounded FIFO store of admission outcomes keyed by identifier."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Iterable, Optional

import structlog

from ..common.metrics import CACHE_EVICTION_COUNTER

LOGGER = structlog.get_logger("sizegate.admission.cache")


class DecisionCache:
    """Remembers allow/deny outcomes per identifier, evicting in insertion order.

    An identifier appears at most once. Inserting an identifier that is
    already present leaves its outcome and position untouched, so an entry is
    immutable until it is evicted. Eviction is strict FIFO: lookups do not
    refresh an entry.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self._capacity = capacity
        self._entries: OrderedDict[str, bool] = OrderedDict()
        self._lock = threading.Lock()
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evictions(self) -> int:
        return self._evictions

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._entries

    def lookup(self, identifier: str) -> Optional[bool]:
        """Return the cached outcome for ``identifier`` or ``None`` when unknown."""
        with self._lock:
            return self._entries.get(identifier)

    def insert(self, identifier: str, allowed: bool) -> bool:
        """Record an outcome; returns False when the identifier was already cached."""
        with self._lock:
            return self._insert_locked(identifier, allowed)

    def insert_many(self, identifiers: Iterable[str], allowed: bool) -> int:
        """Record the same outcome for several identifiers under a single lock hold."""
        with self._lock:
            return sum(1 for identifier in identifiers if self._insert_locked(identifier, allowed))

    def snapshot(self) -> list[tuple[str, bool]]:
        """Entries oldest first."""
        with self._lock:
            return list(self._entries.items())

    def _insert_locked(self, identifier: str, allowed: bool) -> bool:
        if identifier in self._entries:
            return False
        self._entries[identifier] = allowed
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            CACHE_EVICTION_COUNTER.inc()
            LOGGER.debug("decision_evicted", cid=evicted)
        return True
