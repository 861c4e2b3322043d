from __future__ import annotations

import json

import httpx
import pytest

from edu_console.core.errors import StoreError
from edu_console.store.postgrest import PostgrestStore


def _store(handler) -> PostgrestStore:
    return PostgrestStore(url="https://tenant.supabase.co/", key="anon-key", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_select_builds_postgrest_query() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["apikey"] = request.headers.get("apikey")
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=[{"id": 3}])

    store = _store(handler)
    try:
        rows = await store.select(
            "courses",
            columns=("id",),
            match={"title": "Intro", "mux_playback_id": None, "is_free": True},
            order_by="created_at",
            descending=True,
            limit=1,
        )
    finally:
        await store.aclose()

    assert rows == [{"id": 3}]
    assert seen["path"] == "/rest/v1/courses"
    assert seen["params"] == {
        "select": "id",
        "title": "eq.Intro",
        "mux_playback_id": "is.null",
        "is_free": "eq.true",
        "order": "created_at.desc",
        "limit": "1",
    }
    assert seen["apikey"] == "anon-key"
    assert seen["auth"] == "Bearer anon-key"


@pytest.mark.asyncio
async def test_insert_returns_representation() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["prefer"] = request.headers.get("prefer")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=[{"id": 9, "title": "Intro"}])

    store = _store(handler)
    try:
        row = await store.insert("courses", {"title": "Intro"})
    finally:
        await store.aclose()

    assert row == {"id": 9, "title": "Intro"}
    assert seen["prefer"] == "return=representation"
    assert seen["body"] == [{"title": "Intro"}]


@pytest.mark.asyncio
async def test_update_counts_returned_rows_and_requires_filter() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.params["id"] == "eq.9"
        return httpx.Response(200, json=[{"id": 9}])

    store = _store(handler)
    try:
        assert await store.update("courses", {"video_url": "mux://pb"}, match={"id": 9}) == 1
        with pytest.raises(StoreError) as exc:
            await store.update("courses", {"video_url": "mux://pb"}, match={})
        assert exc.value.kind == "validation"
    finally:
        await store.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, body, kind",
    [
        (400, {"code": "PGRST204", "message": "Could not find the 'settings' column of 'courses' in the schema cache"}, "schema"),
        (400, {"code": "42703", "message": 'column "settings" does not exist'}, "schema"),
        (404, {"code": "42P01", "message": 'relation "public.classes" does not exist'}, "schema"),
        (409, {"code": "23505", "message": "duplicate key value violates unique constraint"}, "validation"),
        (401, {"message": "Invalid API key"}, "validation"),
        (503, {"message": "upstream unavailable"}, "transport"),
    ],
)
async def test_errors_are_classified(status_code: int, body: dict, kind: str) -> None:
    store = _store(lambda request: httpx.Response(status_code, json=body))
    try:
        with pytest.raises(StoreError) as exc:
            await store.insert("courses", {"title": "Intro"})
    finally:
        await store.aclose()

    assert exc.value.kind == kind
    assert str(exc.value) == body["message"]


@pytest.mark.asyncio
async def test_unreachable_store_is_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    store = _store(handler)
    try:
        with pytest.raises(StoreError) as exc:
            await store.select("courses")
    finally:
        await store.aclose()
    assert exc.value.kind == "transport"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "call",
    [
        lambda store: store.select("courses"),
        lambda store: store.insert("courses", {"title": "Intro"}),
        lambda store: store.update("courses", {"video_url": "mux://pb"}, match={"id": 9}),
    ],
    ids=["select", "insert", "update"],
)
async def test_non_json_success_body_is_transport_error(call) -> None:
    store = _store(lambda request: httpx.Response(200, text="<html>Bad gateway</html>"))
    try:
        with pytest.raises(StoreError) as exc:
            await call(store)
    finally:
        await store.aclose()

    assert exc.value.kind == "transport"
    assert "non-JSON" in str(exc.value)


@pytest.mark.asyncio
async def test_insert_with_empty_body_returns_submitted_record() -> None:
    store = _store(lambda request: httpx.Response(201))
    try:
        row = await store.insert("courses", {"title": "Intro"})
    finally:
        await store.aclose()

    assert row == {"title": "Intro"}
