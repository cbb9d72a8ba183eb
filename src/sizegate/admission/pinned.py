"""Identifiers admitted unconditionally, loaded once from the trusted pin listing."""

from __future__ import annotations

from typing import Iterable, Iterator

import structlog

from ..graph.base import GraphSource

LOGGER = structlog.get_logger("sizegate.admission.pinned")


class PermanentAllowSet:
    """Immutable set of identifiers that bypass the size check."""

    __slots__ = ("_members",)

    def __init__(self, identifiers: Iterable[str] = ()) -> None:
        self._members = frozenset(identifiers)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._members

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    @classmethod
    async def load(cls, source: GraphSource) -> "PermanentAllowSet":
        """Build the set from the source's pin listing; lookup failures propagate."""
        pinned = await source.list_pinned()
        LOGGER.info("pinned_set_loaded", pinned=len(pinned))
        return cls(pinned)
