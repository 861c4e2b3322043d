from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Sequence

import pytest

from edu_console.core.errors import StoreError
from edu_console.pipeline.files import LocalVideoFile
from edu_console.schemas.mux import MediaAsset, UploadLink, UploadSlot


class FakeStore:
    """In-memory store whose tables only accept a fixed set of columns (like an old schema would)."""

    def __init__(
        self,
        tables: Mapping[str, Sequence[str]],
        *,
        reject_inserts: StoreError | None = None,
        fail_updates: StoreError | None = None,
    ):
        self.columns = {name: set(cols) | {"id", "created_at"} for name, cols in tables.items()}
        self.rows: dict[str, list[dict[str, Any]]] = {name: [] for name in tables}
        self.insert_attempts: list[dict[str, Any]] = []
        self.updates: list[tuple[str, dict[str, Any], dict[str, Any]]] = []
        self.reject_inserts = reject_inserts
        self.fail_updates = fail_updates
        self.closed = False
        self._seq = 0

    def _check(self, table: str, names) -> None:
        if table not in self.columns:
            raise StoreError("schema", f'relation "{table}" does not exist', code="42P01")
        unknown = sorted(set(names) - self.columns[table] - {"*"})
        if unknown:
            raise StoreError("schema", f"Could not find the '{unknown[0]}' column of '{table}'", code="PGRST204")

    @staticmethod
    def _matches(row: dict[str, Any], match: Mapping[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (match or {}).items())

    async def select(
        self,
        table: str,
        *,
        columns: Sequence[str] = ("*",),
        match: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._check(table, [*columns, *(match or {})])
        rows = [r for r in self.rows[table] if self._matches(r, match)]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by) or 0, reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if list(columns) == ["*"]:
            return [dict(r) for r in rows]
        return [{c: r.get(c) for c in columns} for r in rows]

    async def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        self.insert_attempts.append(dict(record))
        if self.reject_inserts is not None:
            raise self.reject_inserts
        self._check(table, record)
        self._seq += 1
        row = {**record, "id": self._seq, "created_at": self._seq}
        self.rows[table].append(row)
        return dict(row)

    async def update(self, table: str, values: Mapping[str, Any], *, match: Mapping[str, Any]) -> int:
        if self.fail_updates is not None:
            raise self.fail_updates
        self._check(table, [*values, *match])
        self.updates.append((table, dict(values), dict(match)))
        count = 0
        for row in self.rows[table]:
            if self._matches(row, match):
                row.update(values)
                count += 1
        return count

    async def aclose(self) -> None:
        self.closed = True


class StubMuxClient:
    """
    Scripted stand-in for MuxClient.

    `links` and `assets` are consumed in order; the last entry repeats. An
    exception instance in either list is raised instead of returned.
    """

    def __init__(
        self,
        *,
        links: Sequence[UploadLink | Exception] = (),
        assets: Sequence[MediaAsset | Exception] = (),
        slot_error: Exception | None = None,
        transfer_error: Exception | None = None,
    ):
        self.links = list(links) or [UploadLink(upload_handle="up_1", status="asset_created", asset_id="asset_1")]
        self.assets = list(assets)
        self.slot_error = slot_error
        self.transfer_error = transfer_error
        self.calls: list[tuple[str, str]] = []
        self.transferred: list[str] = []

    @staticmethod
    def _next(queue: list):
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def create_upload_slot(self) -> UploadSlot:
        self.calls.append(("slot", ""))
        if self.slot_error is not None:
            raise self.slot_error
        return UploadSlot(upload_handle="up_1", upload_target_url="https://storage.example/upload/up_1")

    async def transfer(self, *, upload_target_url: str, file: LocalVideoFile, chunk_size: int = 0, on_bytes=None) -> None:
        self.calls.append(("transfer", upload_target_url))
        if self.transfer_error is not None:
            raise self.transfer_error
        if on_bytes is not None:
            on_bytes(file.size_bytes // 2)
            on_bytes(file.size_bytes)
        self.transferred.append(file.filename)

    async def get_upload_link(self, upload_handle: str) -> UploadLink:
        self.calls.append(("link", upload_handle))
        return self._next(self.links)

    async def get_asset(self, asset_id: str) -> MediaAsset:
        self.calls.append(("asset", asset_id))
        if not self.assets:
            raise AssertionError("no scripted asset responses")
        return self._next(self.assets)

    async def list_assets(self, *, limit: int = 25, page: int = 1) -> list[MediaAsset]:
        return [a for a in self.assets if isinstance(a, MediaAsset)][:limit]


def _make_asset(
    status: str = "preparing",
    *,
    asset_id: str = "asset_1",
    stream_ids: Sequence[str] = (),
    duration: float | None = None,
) -> MediaAsset:
    return MediaAsset(
        asset_id=asset_id,
        status=status if status in {"preparing", "ready", "errored"} else "preparing",
        raw_status=status,
        stream_ids=list(stream_ids),
        duration_seconds=duration,
    )


@pytest.fixture
def fake_store():
    return FakeStore


@pytest.fixture
def stub_mux():
    return StubMuxClient


@pytest.fixture
def make_asset():
    return _make_asset


@pytest.fixture
def make_video(tmp_path: Path):
    def _make(
        name: str = "lecture.mp4",
        *,
        content: bytes = b"\x00" * 1024,
        size_bytes: int | None = None,
        mime_type: str | None = "video/mp4",
    ) -> LocalVideoFile:
        path = tmp_path / name
        with path.open("wb") as fh:
            fh.write(content)
            if size_bytes is not None:
                # Sparse file: reported size without writing the bytes.
                fh.truncate(size_bytes)
        return LocalVideoFile.from_path(path, mime_type=mime_type)

    return _make
