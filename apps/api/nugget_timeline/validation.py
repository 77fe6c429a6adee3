"""Normalization of caller-supplied timeline parameters."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .config import CONFIG, AppConfig
from .errors import ValidationError
from .schemas import ALL_ITEM_KINDS, ActivityFilters, ItemKind, TimelineQuery
from .time_utils import parse_timestamp


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _as_list(value: Any, field: str) -> Optional[List[Any]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    raise ValidationError(f"{field} must be a list of strings.", field=field)


def _clean_strings(values: Optional[Iterable[Any]], field: str) -> Tuple[str, ...]:
    if not values:
        return ()
    cleaned: List[str] = []
    for value in values:
        if not isinstance(value, str):
            raise ValidationError(f"{field} must contain only strings.", field=field)
        value = value.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return tuple(cleaned)


def _resolve_child_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("childId is required.", field="childId")
    return value.strip()


def _resolve_cursor(value: Any) -> Optional[datetime]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = parse_timestamp(value) if isinstance(value, str) else None
    if parsed is None:
        raise ValidationError("cursor must be an ISO-8601 timestamp.", field="cursor")
    return parsed


def _resolve_limit(value: Any, config: AppConfig) -> int:
    if value is None or value == "":
        return config.default_page_size
    if isinstance(value, bool):
        raise ValidationError("limit must be an integer.", field="limit")
    if isinstance(value, int):
        limit = value
    elif isinstance(value, str):
        try:
            limit = int(value.strip())
        except ValueError as exc:
            raise ValidationError("limit must be an integer.", field="limit") from exc
    else:
        raise ValidationError("limit must be an integer.", field="limit")
    return max(config.min_page_size, min(limit, config.max_page_size))


def _resolve_item_kinds(value: Any) -> Tuple[ItemKind, ...]:
    values = _as_list(value, "itemKinds")
    if values is None:
        return ALL_ITEM_KINDS
    requested = set()
    for entry in values:
        try:
            requested.add(ItemKind(entry))
        except ValueError as exc:
            raise ValidationError(
                f"Unsupported itemKinds value: {str(entry)[:40]!r}.", field="itemKinds"
            ) from exc
    return tuple(kind for kind in ALL_ITEM_KINDS if kind in requested)


def validate_timeline_request(
    raw: Mapping[str, Any],
    *,
    config: AppConfig = CONFIG,
) -> TimelineQuery:
    """Turn raw request input into a bounded TimelineQuery or raise ValidationError.

    Accepts either the wire names (``childId``) or snake_case keys (``child_id``).
    """
    child_id = _resolve_child_id(_first(raw, "childId", "child_id"))
    cursor = _resolve_cursor(_first(raw, "cursor"))
    limit = _resolve_limit(_first(raw, "limit"), config)
    item_kinds = _resolve_item_kinds(_first(raw, "itemKinds", "item_kinds"))

    sub_types = _as_list(_first(raw, "activitySubTypes", "activity_sub_types"), "activitySubTypes")
    actor_ids = _as_list(_first(raw, "actorIds", "actor_ids"), "actorIds")

    return TimelineQuery(
        child_id=child_id,
        cursor=cursor,
        limit=limit,
        item_kinds=item_kinds,
        activity_filters=ActivityFilters(
            sub_types=_clean_strings(sub_types, "activitySubTypes"),
            actor_ids=_clean_strings(actor_ids, "actorIds"),
        ),
    )
