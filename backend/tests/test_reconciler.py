from __future__ import annotations

import pytest

from edu_console.core.errors import MuxApiError
from edu_console.pipeline.commit import COURSES, CommitDraft, PersistenceCommitter, VideoRecord
from edu_console.pipeline.duration import DurationEstimate
from edu_console.pipeline.reconcile import ReconcileResult, VideoReconciler
from edu_console.pipeline.upload import PendingAsset
from edu_console.schemas.mux import UploadLink

COURSE_COLUMNS = [
    "title",
    "description",
    "category",
    "price",
    "image_url",
    "video_url",
    "mux_asset_id",
    "mux_playback_id",
    "duration_seconds",
]


def _row(row_id: int, **values) -> dict:
    return {"id": row_id, "created_at": row_id, "title": f"Course {row_id}", "mux_playback_id": None, **values}


@pytest.mark.asyncio
async def test_row_saved_before_upload_was_linked_is_repaired(fake_store, stub_mux, make_asset) -> None:
    store = fake_store({"courses": COURSE_COLUMNS})
    draft = CommitDraft(
        fields={"title": "Intro", "description": "Week 1"},
        video=VideoRecord.build(
            asset=PendingAsset("up_1"), stream_id=None, duration=DurationEstimate(60, "default-fallback")
        ),
    )
    await PersistenceCommitter(store).commit(draft, COURSES)
    assert store.rows["courses"][0]["video_url"] == "mux://up_1"
    client = stub_mux(
        links=[UploadLink(upload_handle="up_1", status="asset_created", asset_id="asset_1")],
        assets=[make_asset("ready", asset_id="asset_1", stream_ids=["pb_1"])],
    )

    results = await VideoReconciler(client, store).reconcile_pending(COURSES)

    assert results == [
        ReconcileResult(asset_id="asset_1", status="ready", stream_id="pb_1", rows_updated=1, upload_handle="up_1")
    ]
    row = store.rows["courses"][0]
    assert row["mux_asset_id"] == "asset_1"
    assert row["mux_playback_id"] == "pb_1"
    assert row["video_url"] == "mux://pb_1"


@pytest.mark.asyncio
async def test_pending_rows_mix_linked_unlinked_and_legacy(fake_store, stub_mux, make_asset) -> None:
    store = fake_store({"courses": COURSE_COLUMNS})
    store.rows["courses"].extend(
        [
            _row(1, mux_asset_id="asset_2", video_url="mux://asset_2"),
            _row(2, mux_asset_id=None, video_url="mux://up_1"),
            _row(3, mux_asset_id=None, video_url="https://cdn.example/old.mp4"),
            _row(4, mux_asset_id="asset_9", video_url="mux://pb_9", mux_playback_id="pb_9"),
        ]
    )
    client = stub_mux(
        links=[UploadLink(upload_handle="up_1", status="asset_created", asset_id="asset_1")],
        assets=[
            make_asset("preparing", asset_id="asset_1"),
            make_asset("ready", asset_id="asset_2", stream_ids=["pb_2"]),
        ],
    )

    results = await VideoReconciler(client, store).reconcile_pending(COURSES)

    assert [(r.upload_handle, r.asset_id, r.status, r.rows_updated) for r in results] == [
        ("up_1", "asset_1", "preparing", 1),
        (None, "asset_2", "ready", 1),
    ]
    assert client.calls == [("link", "up_1"), ("asset", "asset_1"), ("asset", "asset_2")]
    rows = {r["id"]: r for r in store.rows["courses"]}
    # Linked now; the stream id follows on a later run once the asset is ready.
    assert rows[2]["mux_asset_id"] == "asset_1"
    assert rows[2]["video_url"] == "mux://up_1"
    assert rows[1]["video_url"] == "mux://pb_2"
    assert rows[3]["video_url"] == "https://cdn.example/old.mp4"
    assert rows[4]["video_url"] == "mux://pb_9"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "link, status",
    [
        (UploadLink(upload_handle="up_1", status="waiting"), "waiting_for_asset"),
        (UploadLink(upload_handle="up_1", status="errored"), "errored"),
    ],
)
async def test_unlinked_upload_leaves_row_untouched(fake_store, stub_mux, link, status) -> None:
    store = fake_store({"courses": COURSE_COLUMNS})
    store.rows["courses"].append(_row(1, mux_asset_id=None, video_url="mux://up_1"))

    results = await VideoReconciler(stub_mux(links=[link]), store).reconcile_pending(COURSES)

    assert results == [ReconcileResult(asset_id=None, status=status, stream_id=None, rows_updated=0, upload_handle="up_1")]
    assert store.updates == []


@pytest.mark.asyncio
async def test_lookup_errors_are_reported_per_item(fake_store, stub_mux) -> None:
    store = fake_store({"courses": COURSE_COLUMNS})
    store.rows["courses"].extend(
        [
            _row(1, mux_asset_id=None, video_url="mux://up_gone"),
            _row(2, mux_asset_id="asset_gone", video_url="mux://asset_gone"),
        ]
    )
    client = stub_mux(
        links=[MuxApiError("not_found", "upload not found", status_code=404)],
        assets=[MuxApiError("not_found", "asset not found", status_code=404)],
    )

    results = await VideoReconciler(client, store).reconcile_pending(COURSES)

    assert [(r.upload_handle, r.asset_id, r.status) for r in results] == [
        ("up_gone", None, "lookup_failed"),
        (None, "asset_gone", "lookup_failed"),
    ]
    assert store.updates == []


@pytest.mark.asyncio
async def test_reconcile_skips_assets_that_are_not_ready(fake_store, stub_mux, make_asset) -> None:
    store = fake_store({"courses": COURSE_COLUMNS})
    store.rows["courses"].append(_row(1, mux_asset_id="asset_1", video_url="mux://asset_1"))
    client = stub_mux(assets=[make_asset("preparing", asset_id="asset_1")])

    result = await VideoReconciler(client, store).reconcile(COURSES, "asset_1")

    assert result == ReconcileResult(asset_id="asset_1", status="preparing", stream_id=None, rows_updated=0)
    assert store.rows["courses"][0]["video_url"] == "mux://asset_1"
