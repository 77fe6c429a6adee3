"""Read-only record sources backing the timeline feed.

Each source returns at most ``limit`` rows for one child, newest first by the
source's own timestamp column, optionally bounded by an exclusive cursor.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

import httpx
from fastapi import HTTPException
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import CONFIG, AppConfig
from .errors import SourceFetchError
from .schemas import (
    ActivityFilters,
    ActivityRecord,
    ChatMessageRecord,
    ChatRecord,
    ItemKind,
    MilestoneRecord,
)
from .supabase import SupabaseClient
from .time_utils import format_cursor

logger = logging.getLogger(__name__)

T = TypeVar("T")
RecordT = TypeVar("RecordT", bound=BaseModel)

ACTOR_EMBED = "user:users(id,firstName,lastName,avatarUrl,email)"


def quote_in_list(values: Iterable[str]) -> str:
    """Build a PostgREST ``in.(...)`` operand with every value quoted."""
    quoted = []
    for value in values:
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{escaped}"')
    return f"in.({','.join(quoted)})"


async def gather_or_cancel(*aws: Awaitable[T]) -> List[T]:
    """Run awaitables concurrently; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class RecordSource:
    kind: ItemKind
    table: str

    def __init__(self, supabase: SupabaseClient) -> None:
        self.supabase = supabase

    async def fetch(
        self,
        child_id: str,
        cursor: Optional[datetime],
        limit: int,
        filters: Optional[ActivityFilters] = None,
    ) -> List[Any]:
        raise NotImplementedError

    async def _select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            rows = await self.supabase.select(table, params)
        except (HTTPException, httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "timeline source failed",
                extra={
                    "source": self.kind.value,
                    "table": table,
                    "error_type": type(exc).__name__,
                },
            )
            raise SourceFetchError(self.kind.value) from exc
        if not isinstance(rows, list):
            raise SourceFetchError(self.kind.value, f"Unexpected {table} response shape.")
        return rows

    def _parse_rows(
        self,
        rows: Sequence[Any],
        model: Type[RecordT],
        *,
        child_id: Optional[str] = None,
    ) -> List[RecordT]:
        records: List[RecordT] = []
        for row in rows:
            try:
                record = model.model_validate(row)
            except PydanticValidationError:
                logger.warning(
                    "timeline record dropped",
                    extra={
                        "source": self.kind.value,
                        "record_id": row.get("id") if isinstance(row, dict) else None,
                        "reason": "shape",
                    },
                )
                continue
            if child_id is not None and getattr(record, "baby_id", child_id) != child_id:
                logger.warning(
                    "timeline record outside requested scope",
                    extra={"source": self.kind.value, "record_id": getattr(record, "id", None)},
                )
                continue
            records.append(record)
        return records

    @staticmethod
    def _base_params(child_id: str, order_column: str, limit: int) -> Dict[str, Any]:
        return {
            "babyId": f"eq.{child_id}",
            "order": f"{order_column}.desc",
            "limit": limit,
        }


class ActivitySource(RecordSource):
    kind = ItemKind.ACTIVITY
    table = "activities"

    async def fetch(
        self,
        child_id: str,
        cursor: Optional[datetime],
        limit: int,
        filters: Optional[ActivityFilters] = None,
    ) -> List[ActivityRecord]:
        params = self._base_params(child_id, "startTime", limit)
        params["select"] = f"*,{ACTOR_EMBED}"
        params["isScheduled"] = "eq.false"
        if cursor is not None:
            params["startTime"] = f"lt.{format_cursor(cursor)}"
        if filters and filters.sub_types:
            params["type"] = quote_in_list(filters.sub_types)
        if filters and filters.actor_ids:
            params["userId"] = quote_in_list(filters.actor_ids)

        rows = await self._select(self.table, params)
        records = self._parse_rows(rows, ActivityRecord, child_id=child_id)
        return [record for record in records if not record.is_scheduled]


class MilestoneSource(RecordSource):
    kind = ItemKind.MILESTONE
    table = "milestones"

    async def fetch(
        self,
        child_id: str,
        cursor: Optional[datetime],
        limit: int,
        filters: Optional[ActivityFilters] = None,
    ) -> List[MilestoneRecord]:
        params = self._base_params(child_id, "achievedDate", limit)
        params["select"] = "*"
        # lt.<cursor> already excludes null achievedDate rows
        if cursor is not None:
            params["achievedDate"] = f"lt.{format_cursor(cursor)}"
        else:
            params["achievedDate"] = "not.is.null"

        rows = await self._select(self.table, params)
        return self._parse_rows(rows, MilestoneRecord, child_id=child_id)


class ChatSource(RecordSource):
    """Chat threads paired with their opening message."""

    kind = ItemKind.CHAT
    table = "chats"
    messages_table = "chatMessages"

    def __init__(self, supabase: SupabaseClient, *, config: AppConfig = CONFIG) -> None:
        super().__init__(supabase)
        self.message_concurrency = config.chat_message_concurrency

    async def _first_message(
        self, chat: ChatRecord, gate: asyncio.Semaphore
    ) -> Optional[ChatMessageRecord]:
        async with gate:
            rows = await self._select(
                self.messages_table,
                {
                    "select": "*",
                    "chatId": f"eq.{chat.id}",
                    "order": "createdAt.asc",
                    "limit": 1,
                },
            )
        messages = self._parse_rows(rows[:1], ChatMessageRecord)
        if not messages or messages[0].chat_id != chat.id:
            return None
        return messages[0]

    async def fetch(
        self,
        child_id: str,
        cursor: Optional[datetime],
        limit: int,
        filters: Optional[ActivityFilters] = None,
    ) -> List[Tuple[ChatRecord, ChatMessageRecord]]:
        params = self._base_params(child_id, "createdAt", limit)
        params["select"] = "*"
        if cursor is not None:
            params["createdAt"] = f"lt.{format_cursor(cursor)}"

        rows = await self._select(self.table, params)
        chats = self._parse_rows(rows, ChatRecord, child_id=child_id)
        if not chats:
            return []

        gate = asyncio.Semaphore(self.message_concurrency)
        first_messages = await gather_or_cancel(
            *(self._first_message(chat, gate) for chat in chats)
        )
        return [
            (chat, message)
            for chat, message in zip(chats, first_messages)
            if message is not None
        ]


def build_sources(supabase: SupabaseClient, *, config: AppConfig = CONFIG) -> Dict[ItemKind, RecordSource]:
    return {
        ItemKind.ACTIVITY: ActivitySource(supabase),
        ItemKind.MILESTONE: MilestoneSource(supabase),
        ItemKind.CHAT: ChatSource(supabase, config=config),
    }
