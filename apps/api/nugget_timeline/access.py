"""Child ownership check run before any timeline source is queried."""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import HTTPException

from .errors import AuthenticationRequired, AuthorizationDenied, SourceFetchError
from .supabase import AuthContext

logger = logging.getLogger(__name__)


async def ensure_child_access(ctx: Optional[AuthContext], child_id: str) -> None:
    """Confirm the caller's family owns ``child_id``.

    A missing child and a child from another family both raise
    AuthorizationDenied with the same message.
    """
    if ctx is None or not ctx.user_id or not ctx.family_id:
        raise AuthenticationRequired()

    try:
        rows = await ctx.supabase.select(
            "babies",
            params={
                "select": "id",
                "id": f"eq.{child_id}",
                "familyId": f"eq.{ctx.family_id}",
                "limit": 1,
            },
        )
    except (HTTPException, httpx.HTTPError) as exc:
        logger.warning(
            "child access lookup failed",
            extra={"child_id": child_id, "error_type": type(exc).__name__},
        )
        raise SourceFetchError("babies") from exc

    if not rows:
        logger.warning(
            "child access denied",
            extra={"user_id": ctx.user_id, "child_id": child_id},
        )
        raise AuthorizationDenied()
