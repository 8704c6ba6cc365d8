"""Request-scoped dependencies."""

from typing import Optional

from fastapi import Header, HTTPException, Request

from ledger.orchestrator import LedgerComponents


def get_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    """
    The authenticated user, as asserted by the upstream auth layer.

    Owner fields in request bodies are never trusted.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id.strip()


def get_components(request: Request) -> LedgerComponents:
    return request.app.state.components
