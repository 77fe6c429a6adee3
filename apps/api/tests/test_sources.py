import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from fastapi import HTTPException

from nugget_timeline.config import AppConfig
from nugget_timeline.errors import SourceFetchError
from nugget_timeline.schemas import ActivityFilters
from nugget_timeline.sources import (
    ActivitySource,
    ChatSource,
    MilestoneSource,
    gather_or_cancel,
    quote_in_list,
)

from timeline_helpers import CHILD_ID, FakeSupabase, activity, at, chat, message, milestone, timeline_tables

CURSOR = datetime(2024, 6, 2, 12, 30, tzinfo=timezone.utc)


def test_quote_in_list_escapes_quotes_and_backslashes():
    assert quote_in_list(["bottle", 'a"b', "c\\d", "x,y"]) == 'in.("bottle","a\\"b","c\\\\d","x,y")'


def test_activity_source_builds_scoped_query():
    fake = FakeSupabase(timeline_tables(activities=[activity("a1", at(1))]))
    source = ActivitySource(fake)

    records = asyncio.run(
        source.fetch(
            CHILD_ID,
            CURSOR,
            9,
            ActivityFilters(sub_types=("bottle", "nursing"), actor_ids=("user-a",)),
        )
    )

    assert [record.id for record in records] == ["a1"]
    assert records[0].user.first_name == "Sam"
    params = fake.calls_for("activities")[0]
    assert params["babyId"] == f"eq.{CHILD_ID}"
    assert params["isScheduled"] == "eq.false"
    assert params["startTime"] == "lt.2024-06-02T12:30:00.000000Z"
    assert params["type"] == 'in.("bottle","nursing")'
    assert params["userId"] == 'in.("user-a")'
    assert params["order"] == "startTime.desc"
    assert params["limit"] == 9
    assert "users(" in params["select"]


def test_milestone_source_uses_cursor_instead_of_null_check():
    fake = FakeSupabase(timeline_tables(milestones=[milestone("m1", at(1)), milestone("m2", None)]))
    source = MilestoneSource(fake)

    records = asyncio.run(source.fetch(CHILD_ID, CURSOR, 5))

    assert [record.id for record in records] == ["m1"]
    params = fake.calls_for("milestones")[0]
    assert params["achievedDate"] == "lt.2024-06-02T12:30:00.000000Z"
    assert params["order"] == "achievedDate.desc"


def test_milestone_source_ignores_activity_filters():
    fake = FakeSupabase(timeline_tables(milestones=[milestone("m1", at(1))]))

    asyncio.run(MilestoneSource(fake).fetch(CHILD_ID, None, 5, ActivityFilters(sub_types=("bottle",))))

    assert "type" not in fake.calls_for("milestones")[0]


def test_chat_source_pairs_threads_with_first_message():
    fake = FakeSupabase(
        timeline_tables(
            chats=[chat("t1", at(10)), chat("t2", at(20))],
            chatMessages=[
                message("t1-b", "t1", at(12)),
                message("t1-a", "t1", at(11)),
                message("t2-a", "t2", at(21)),
            ],
        )
    )

    pairs = asyncio.run(ChatSource(fake).fetch(CHILD_ID, None, 10))

    assert [(thread.id, first.id) for thread, first in pairs] == [("t2", "t2-a"), ("t1", "t1-a")]
    assert fake.calls_for("chats")[0]["order"] == "createdAt.desc"


def test_chat_source_bounds_concurrent_message_lookups():
    active = 0
    peak = 0

    class CountingSupabase(FakeSupabase):
        async def select(self, table, params):
            nonlocal active, peak
            if table != "chatMessages":
                return await super().select(table, params)
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await super().select(table, params)

    threads = [chat(f"t{i}", at(i)) for i in range(8)]
    messages = [message(f"m{i}", f"t{i}", at(i)) for i in range(8)]
    fake = CountingSupabase(timeline_tables(chats=threads, chatMessages=messages))
    source = ChatSource(fake, config=AppConfig(chat_message_concurrency=3))

    pairs = asyncio.run(source.fetch(CHILD_ID, None, 10))

    assert len(pairs) == 8
    assert peak <= 3


@pytest.mark.parametrize(
    "failure",
    [
        HTTPException(status_code=503, detail="Supabase select failed"),
        httpx.ConnectError("connection refused"),
        ValueError("invalid json"),
    ],
)
def test_store_failures_become_source_fetch_errors(failure):
    fake = FakeSupabase(timeline_tables(), failures={"activities": failure})

    with pytest.raises(SourceFetchError) as exc:
        asyncio.run(ActivitySource(fake).fetch(CHILD_ID, None, 5))

    assert exc.value.kind == "activity"
    assert exc.value.__cause__ is failure


def test_chat_message_failure_is_attributed_to_chat_source():
    fake = FakeSupabase(
        timeline_tables(chats=[chat("t1", at(1))]),
        failures={"chatMessages": HTTPException(status_code=500, detail="boom")},
    )

    with pytest.raises(SourceFetchError) as exc:
        asyncio.run(ChatSource(fake).fetch(CHILD_ID, None, 5))

    assert exc.value.kind == "chat"


def test_rows_with_unexpected_shape_are_dropped():
    fake = FakeSupabase(timeline_tables(activities=[activity("a1", at(1))]))
    fake.tables["activities"].append({"id": "broken", "babyId": CHILD_ID, "isScheduled": False})

    records = asyncio.run(ActivitySource(fake).fetch(CHILD_ID, None, 5))

    assert [record.id for record in records] == ["a1"]


def test_non_list_response_is_rejected():
    class OddSupabase(FakeSupabase):
        async def select(self, table, params):
            return {"message": "unexpected"}

    with pytest.raises(SourceFetchError):
        asyncio.run(MilestoneSource(OddSupabase()).fetch(CHILD_ID, None, 5))


def test_gather_or_cancel_cancels_siblings_on_failure():
    cancelled = []

    async def slow():
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.append("slow")
            raise

    async def broken():
        await asyncio.sleep(0)
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        asyncio.run(gather_or_cancel(slow(), broken()))

    assert cancelled == ["slow"]
