"""Graph data source backed by the Kubo (go-ipfs) RPC API."""

from __future__ import annotations

from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from ..common.metrics import LOOKUP_COUNTER
from ..common.schemas import BlockRef, BlockStatResponse, LsResponse, PinLsResponse
from .base import DataSourceUnavailable

LOGGER = structlog.get_logger("sizegate.graph.kubo")


class KuboGraphSource:
    """Answers graph queries with ``/api/v0/ls``, ``/api/v0/block/stat`` and ``/api/v0/pin/ls``."""

    def __init__(self, http_client: httpx.AsyncClient, pinned_type: str = "recursive") -> None:
        self._http = http_client
        self._pinned_type = pinned_type

    async def list_links(self, identifier: str) -> list[BlockRef]:
        payload = await self._call(
            "ls",
            identifier,
            LsResponse,
            params={"arg": identifier, "resolve-type": "true", "size": "true"},
        )
        refs: list[BlockRef] = []
        for obj in payload.objects:
            refs.extend(link.to_block_ref() for link in obj.links)
        return refs

    async def block_stat(self, identifier: str) -> int:
        payload = await self._call("block/stat", identifier, BlockStatResponse, params={"arg": identifier})
        return payload.size

    async def list_pinned(self) -> set[str]:
        payload = await self._call("pin/ls", None, PinLsResponse, params={"type": self._pinned_type})
        return set(payload.keys)

    async def _call(self, command: str, identifier: Optional[str], model: type[BaseModel], params: dict[str, str]):
        LOOKUP_COUNTER.inc()
        try:
            # The RPC API only accepts POST.
            response = await self._http.post(f"/api/v0/{command}", params=params)
        except httpx.HTTPError as exc:
            LOGGER.warning("kubo_request_failed", command=command, cid=identifier, error=str(exc))
            raise DataSourceUnavailable(identifier, f"{command} request failed: {exc}") from exc

        if response.is_error:
            LOGGER.warning(
                "kubo_request_rejected",
                command=command,
                cid=identifier,
                status=response.status_code,
                body=response.text[:500],
            )
            raise DataSourceUnavailable(identifier, f"{command} returned HTTP {response.status_code}")

        try:
            return model.model_validate_json(response.content)
        except ValidationError as exc:
            LOGGER.warning("kubo_response_invalid", command=command, cid=identifier, error=str(exc))
            raise DataSourceUnavailable(identifier, f"{command} returned an unexpected payload") from exc
