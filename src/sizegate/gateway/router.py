"""Recognises content-addressed request paths."""

from __future__ import annotations

from typing import Optional

CONTENT_NAMESPACE = "ipfs"


def extract_identifier(path: str) -> Optional[str]:
    """Return the root identifier of ``/ipfs/<id>[/...]`` paths, ``None`` for anything else."""
    segments = path.split("/")
    if len(segments) < 3 or segments[0] != "" or segments[1] != CONTENT_NAMESPACE:
        return None
    return segments[2] or None
