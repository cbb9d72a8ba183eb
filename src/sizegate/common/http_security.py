"""Access control for the gateway's operator endpoints."""

from __future__ import annotations

import hmac
from ipaddress import ip_address
from typing import Optional

from fastapi import HTTPException, Request, status


def require_operator_access(request: Request, token: Optional[str]) -> None:
    """Allow a matching bearer token, or loopback clients when no token is configured."""
    if token:
        auth_header = request.headers.get("authorization") or ""
        if not hmac.compare_digest(auth_header, f"Bearer {token}"):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid operator token")
        return

    client_host = request.client.host if request.client else None
    try:
        loopback = bool(client_host) and ip_address(client_host).is_loopback
    except ValueError:
        loopback = False
    if not loopback:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator endpoints restricted to localhost")
