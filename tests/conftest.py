from __future__ import annotations

import asyncio
from typing import Iterable, Mapping, Sequence

import pytest

from sizegate.common.schemas import BlockRef
from sizegate.graph.base import DataSourceUnavailable


def leaf(identifier: str, size: int) -> BlockRef:
    return BlockRef(identifier=identifier, declared_size=size, is_branch=False)


def branch(identifier: str) -> BlockRef:
    return BlockRef(identifier=identifier, declared_size=0, is_branch=True)


class FakeGraphSource:
    """In-memory graph source recording every lookup."""

    def __init__(
        self,
        graph: Mapping[str, Sequence[BlockRef]] | None = None,
        *,
        failing: Iterable[str] = (),
        pinned: Iterable[str] = (),
        block_sizes: Mapping[str, int] | None = None,
        delay: float = 0.0,
        pin_failure: bool = False,
    ) -> None:
        self.graph = dict(graph or {})
        self.failing = set(failing)
        self.pinned = set(pinned)
        self.block_sizes = dict(block_sizes or {})
        self.delay = delay
        self.pin_failure = pin_failure
        self.calls: list[str] = []

    async def list_links(self, identifier: str) -> list[BlockRef]:
        self.calls.append(identifier)
        if self.delay:
            await asyncio.sleep(self.delay)
        if identifier in self.failing:
            raise DataSourceUnavailable(identifier, "lookup failed")
        return list(self.graph.get(identifier, ()))

    async def block_stat(self, identifier: str) -> int:
        if identifier in self.failing:
            raise DataSourceUnavailable(identifier, "stat failed")
        return self.block_sizes.get(identifier, 0)

    async def list_pinned(self) -> set[str]:
        if self.pin_failure:
            raise DataSourceUnavailable(None, "pin listing failed")
        return set(self.pinned)


@pytest.fixture(name="leaf")
def leaf_fixture():
    return leaf


@pytest.fixture(name="branch")
def branch_fixture():
    return branch


@pytest.fixture
def make_source():
    return FakeGraphSource


@pytest.fixture
def sample_graph() -> dict[str, list[BlockRef]]:
    return {
        "Qroot": [leaf("Qleaf-a", 600_000), leaf("Qleaf-b", 600_000)],
        "Rsmall": [leaf("Rsmall-leaf", 100)],
        "Rerr": [leaf("Rerr-leaf", 10), branch("Rerr-broken")],
        "Rdir": [branch("Rdir-sub"), leaf("Rdir-readme", 2_000)],
        "Rdir-sub": [leaf("Rdir-sub-file", 3_000)],
    }
