import asyncio

import pytest
from fastapi import HTTPException

from nugget_timeline.access import ensure_child_access
from nugget_timeline.errors import AuthenticationRequired, AuthorizationDenied, SourceFetchError

from timeline_helpers import (
    CHILD_ID,
    FAMILY_ID,
    OTHER_CHILD_ID,
    FakeSupabase,
    auth_with_supabase,
    timeline_tables,
)


def test_owned_child_passes_and_query_is_family_scoped():
    fake = FakeSupabase(timeline_tables())

    asyncio.run(ensure_child_access(auth_with_supabase(fake), CHILD_ID))

    params = fake.calls_for("babies")[0]
    assert params["id"] == f"eq.{CHILD_ID}"
    assert params["familyId"] == f"eq.{FAMILY_ID}"


@pytest.mark.parametrize("child_id", [OTHER_CHILD_ID, "does-not-exist"])
def test_foreign_and_missing_children_look_the_same(child_id):
    fake = FakeSupabase(timeline_tables())

    with pytest.raises(AuthorizationDenied) as exc:
        asyncio.run(ensure_child_access(auth_with_supabase(fake), child_id))

    assert exc.value.message == AuthorizationDenied().message


def test_missing_family_requires_authentication():
    fake = FakeSupabase(timeline_tables())
    auth = auth_with_supabase(fake, family_id="")

    with pytest.raises(AuthenticationRequired):
        asyncio.run(ensure_child_access(auth, CHILD_ID))

    assert fake.calls == []


def test_lookup_failure_is_a_fetch_error():
    fake = FakeSupabase(failures={"babies": HTTPException(status_code=500, detail="down")})

    with pytest.raises(SourceFetchError) as exc:
        asyncio.run(ensure_child_access(auth_with_supabase(fake), CHILD_ID))

    assert exc.value.kind == "babies"
