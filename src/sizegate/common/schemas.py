"""Shared data models for the size gate."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# UnixFS node types reported by the Kubo ``ls`` command that carry further links.
UNIXFS_DIRECTORY = 1
UNIXFS_HAMT_SHARD = 5
BRANCH_TYPES = frozenset({UNIXFS_DIRECTORY, UNIXFS_HAMT_SHARD})


@dataclass(frozen=True, slots=True)
class BlockRef:
    """A direct child of a graph node as reported by the data source."""

    identifier: str
    declared_size: int
    is_branch: bool


@dataclass(frozen=True, slots=True)
class TraversalResult:
    """Closure of identifiers reachable from a root and the sum of their leaf sizes.

    ``visited`` holds each identifier once, in walk order, starting with the root.
    """

    root: str
    visited: tuple[str, ...]
    total_size: int


class AdmissionResult(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    ERROR = "error"


class DecisionSource(str, Enum):
    PINNED = "pinned"
    CACHE = "cache"
    TRAVERSAL = "traversal"


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    identifier: str
    result: AdmissionResult
    source: DecisionSource
    total_size: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.result is AdmissionResult.ALLOW


class LsLink(BaseModel):
    """Single link entry of a Kubo ``ls`` response."""

    model_config = ConfigDict(extra="ignore")

    hash: str = Field(alias="Hash")
    name: str = Field(default="", alias="Name")
    size: int = Field(default=0, alias="Size")
    type: int = Field(default=0, alias="Type")

    def to_block_ref(self) -> BlockRef:
        return BlockRef(identifier=self.hash, declared_size=self.size, is_branch=self.type in BRANCH_TYPES)


class LsObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hash: str = Field(alias="Hash")
    links: list[LsLink] = Field(default_factory=list, alias="Links")

    @field_validator("links", mode="before")
    @classmethod
    def _null_links(cls, value):
        return value or []


class LsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    objects: list[LsObject] = Field(default_factory=list, alias="Objects")


class BlockStatResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str = Field(alias="Key")
    size: int = Field(alias="Size")


class PinInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(default="", alias="Type")


class PinLsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    keys: dict[str, PinInfo] = Field(default_factory=dict, alias="Keys")

    @field_validator("keys", mode="before")
    @classmethod
    def _null_keys(cls, value):
        return value or {}
