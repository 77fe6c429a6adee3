from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..schemas import TimelineResponse
from ..supabase import AuthContext, get_auth_context
from ..timeline import get_timeline_items

router = APIRouter(prefix="/api/v1", tags=["timeline"])


def _split_values(values: Optional[List[str]]) -> Optional[List[str]]:
    """Accept both repeated params and comma separated values."""
    if values is None:
        return None
    return [part.strip() for value in values for part in value.split(",") if part.strip()]


@router.get("/timeline/items", response_model=TimelineResponse)
async def list_timeline_items(
    child_id: Optional[str] = Query(None, alias="childId", description="Child identifier"),
    cursor: Optional[str] = Query(None, description="nextCursor from the previous page"),
    limit: Optional[str] = Query(None, description="Page size, clamped to 1-100"),
    item_kinds: Optional[List[str]] = Query(None, alias="itemKinds"),
    activity_sub_types: Optional[List[str]] = Query(None, alias="activitySubTypes"),
    actor_ids: Optional[List[str]] = Query(None, alias="actorIds"),
    auth: AuthContext = Depends(get_auth_context),
) -> TimelineResponse:
    """Return one page of the merged activity, milestone and chat feed for a child."""

    return await get_timeline_items(
        auth,
        {
            "childId": child_id,
            "cursor": cursor,
            "limit": limit,
            "itemKinds": _split_values(item_kinds),
            "activitySubTypes": _split_values(activity_sub_types),
            "actorIds": _split_values(actor_ids),
        },
    )
