"""Graph data source interface consumed by the resolver."""

from __future__ import annotations

import abc
from typing import Protocol, Sequence

from ..common.schemas import BlockRef


class DataSourceUnavailable(RuntimeError):
    """A graph data source lookup failed (transport error, bad status, bad payload or timeout)."""

    def __init__(self, identifier: str | None, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"{identifier or '-'}: {reason}")


class GraphSource(Protocol):
    """Protocol implemented by anything able to answer link and size queries for identifiers."""

    @abc.abstractmethod
    async def list_links(self, identifier: str) -> Sequence[BlockRef]:
        """Return the direct children of ``identifier`` in link order."""
        ...

    @abc.abstractmethod
    async def block_stat(self, identifier: str) -> int:
        """Return the stored byte size of a single block."""
        ...

    @abc.abstractmethod
    async def list_pinned(self) -> set[str]:
        """Return the identifiers of the trusted pin listing."""
        ...
