"""Unified child timeline: activities, achieved milestones and chats in one feed.

Every enabled source is queried concurrently with the same exclusive cursor and
an over-fetched row budget, results are merged newest first and cut to the
requested page size. The next cursor is the timestamp of the last item on a
full page; a short page ends the feed.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .access import ensure_child_access
from .config import CONFIG, AppConfig
from .errors import MalformedRecord, SourceFetchError
from .schemas import (
    KIND_RANK,
    ActivityItem,
    ActivityRecord,
    ChatItem,
    ChatMessageRecord,
    ChatRecord,
    ItemKind,
    MilestoneItem,
    MilestoneRecord,
    TimelineItem,
    TimelineQuery,
    TimelineResponse,
)
from .sources import RecordSource, build_sources, gather_or_cancel
from .supabase import AuthContext
from .time_utils import format_cursor, parse_timestamp
from .validation import validate_timeline_request

logger = logging.getLogger(__name__)


def normalize_activity(record: ActivityRecord) -> ActivityItem:
    timestamp = parse_timestamp(record.start_time)
    if timestamp is None:
        raise MalformedRecord(ItemKind.ACTIVITY.value, record.id, record.start_time)
    return ActivityItem(timestamp=timestamp, data=record)


def normalize_milestone(record: MilestoneRecord) -> MilestoneItem:
    timestamp = parse_timestamp(record.achieved_date)
    if timestamp is None:
        raise MalformedRecord(ItemKind.MILESTONE.value, record.id, record.achieved_date)
    return MilestoneItem(timestamp=timestamp, data=record)


def normalize_chat(pair: Tuple[ChatRecord, ChatMessageRecord]) -> ChatItem:
    chat, message = pair
    # Anchored on the opening message, not the thread.
    timestamp = parse_timestamp(message.created_at)
    if timestamp is None:
        raise MalformedRecord(ItemKind.CHAT.value, message.id, message.created_at)
    return ChatItem(timestamp=timestamp, data=message, chat=chat)


NORMALIZERS = {
    ItemKind.ACTIVITY: normalize_activity,
    ItemKind.MILESTONE: normalize_milestone,
    ItemKind.CHAT: normalize_chat,
}


def sort_items(items: Sequence[TimelineItem]) -> List[TimelineItem]:
    """Newest first; equal timestamps ordered by kind (activity, milestone, chat) then id."""
    ordered = sorted(items, key=lambda item: (KIND_RANK[ItemKind(item.kind)], item.data.id))
    ordered.sort(key=lambda item: item.timestamp, reverse=True)
    return ordered


def paginate(items: Sequence[TimelineItem], limit: int) -> TimelineResponse:
    page = list(items[:limit])
    next_cursor = format_cursor(page[-1].timestamp) if page and len(page) == limit else None
    return TimelineResponse(items=page, next_cursor=next_cursor)


class TimelineAggregator:
    def __init__(
        self,
        sources: Mapping[ItemKind, RecordSource],
        *,
        config: AppConfig = CONFIG,
    ) -> None:
        self.sources = sources
        self.config = config

    async def _fetch(self, kind: ItemKind, query: TimelineQuery, overfetch: int) -> List[Any]:
        source = self.sources[kind]
        try:
            return await asyncio.wait_for(
                source.fetch(query.child_id, query.cursor, overfetch, query.activity_filters),
                timeout=self.config.source_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "timeline source failed",
                extra={"source": kind.value, "error_type": "timeout"},
            )
            raise SourceFetchError(kind.value, f"Timed out loading {kind.value} records.") from exc

    def _normalize(self, kind: ItemKind, records: Sequence[Any], dropped: Counter) -> List[TimelineItem]:
        normalize = NORMALIZERS[kind]
        items: List[TimelineItem] = []
        for record in records:
            try:
                items.append(normalize(record))
            except MalformedRecord as exc:
                dropped[kind.value] += 1
                logger.warning(
                    "timeline record dropped",
                    extra={
                        "source": exc.kind,
                        "record_id": exc.record_id,
                        "raw_timestamp": str(exc.raw_value)[:100],
                    },
                )
        return items

    async def aggregate(self, query: TimelineQuery) -> TimelineResponse:
        kinds = [kind for kind in query.item_kinds if kind in self.sources]
        if not kinds:
            return TimelineResponse(items=[], next_cursor=None)

        overfetch = self.config.overfetch_limit(query.limit)
        results = await gather_or_cancel(
            *(self._fetch(kind, query, overfetch) for kind in kinds)
        )

        dropped: Counter = Counter()
        merged: List[TimelineItem] = []
        for kind, records in zip(kinds, results):
            merged.extend(self._normalize(kind, records, dropped))

        if query.cursor is not None:
            # Chats are bounded by thread creation but anchored on their first
            # message, so the cursor is re-applied to the anchor timestamp.
            merged = [item for item in merged if item.timestamp < query.cursor]

        response = paginate(sort_items(merged), query.limit)
        logger.info(
            "timeline page",
            extra={
                "child_id": query.child_id,
                "count": len(response.items),
                "by_kind": dict(Counter(item.kind for item in response.items)),
                "dropped": sum(dropped.values()),
                "has_next": response.next_cursor is not None,
            },
        )
        return response


async def get_timeline_items(
    ctx: Optional[AuthContext],
    raw: Mapping[str, Any],
    *,
    config: AppConfig = CONFIG,
    sources: Optional[Dict[ItemKind, RecordSource]] = None,
) -> TimelineResponse:
    """Validate the request, check child ownership, then build one page of the feed."""
    query = validate_timeline_request(raw, config=config)
    logger.info(
        "timeline request",
        extra={
            "child_id": query.child_id,
            "limit": query.limit,
            "kinds": [kind.value for kind in query.item_kinds],
            "has_cursor": query.cursor is not None,
        },
    )
    await ensure_child_access(ctx, query.child_id)

    aggregator = TimelineAggregator(
        sources if sources is not None else build_sources(ctx.supabase, config=config),
        config=config,
    )
    return await aggregator.aggregate(query)
