from __future__ import annotations

from pathlib import Path

import pytest

from edu_console.core.errors import FileTooLarge, MuxApiError, TransferFailed, UploadRejected
from edu_console.pipeline.files import LocalVideoFile
from edu_console.pipeline.upload import PendingAsset, ResolvedAsset, UploadOrchestrator, UploadSession
from edu_console.schemas.mux import UploadLink


@pytest.mark.asyncio
async def test_upload_happy_path_reports_monotonic_progress(stub_mux, make_video) -> None:
    client = stub_mux()
    progress: list[int] = []
    session = UploadSession()

    result = await UploadOrchestrator(client).upload(make_video(), on_progress=progress.append, session=session)

    assert result.upload_handle == "up_1"
    assert result.asset == ResolvedAsset(asset_id="asset_1")
    assert result.asset_id == "asset_1"
    assert progress[0] == 10
    assert progress[-2:] == [90, 100]
    assert progress == sorted(progress)
    assert session.upload_handle == "up_1"
    assert session.transfer_progress == 100
    assert session.error_message is None


@pytest.mark.asyncio
async def test_non_video_is_rejected_before_any_service_call(stub_mux, make_video) -> None:
    client = stub_mux()
    session = UploadSession()
    video = make_video("notes.pdf", mime_type="application/pdf")

    with pytest.raises(UploadRejected):
        await UploadOrchestrator(client).upload(video, session=session)

    assert client.calls == []
    assert session.upload_handle is None
    assert "Not a video file" in (session.error_message or "")


@pytest.mark.asyncio
async def test_oversized_file_is_rejected(stub_mux) -> None:
    client = stub_mux()
    video = LocalVideoFile(path=Path("/nonexistent/huge.mp4"), filename="huge.mp4", mime_type="video/mp4", size_bytes=11)

    with pytest.raises(FileTooLarge) as exc:
        await UploadOrchestrator(client, max_size_bytes=10).upload(video)

    assert exc.value.max_size_bytes == 10
    assert client.calls == []


def test_mime_type_is_guessed_from_filename(make_video) -> None:
    video = make_video("lecture.mov", mime_type=None)
    assert video.mime_type == "video/quicktime"
    assert video.is_video


@pytest.mark.asyncio
async def test_slot_creation_failure_is_a_transfer_failure(stub_mux, make_video) -> None:
    client = stub_mux(slot_error=MuxApiError("unauthorized", "bad token", status_code=401))

    with pytest.raises(TransferFailed, match="Failed to create upload URL"):
        await UploadOrchestrator(client).upload(make_video())


@pytest.mark.asyncio
async def test_transfer_failure_stops_progress(stub_mux, make_video) -> None:
    client = stub_mux(transfer_error=TransferFailed("Upload failed", status_code=500, body="boom"))
    progress: list[int] = []

    with pytest.raises(TransferFailed):
        await UploadOrchestrator(client).upload(make_video(), on_progress=progress.append)

    assert progress == [10]
    assert ("link", "up_1") not in client.calls


@pytest.mark.asyncio
async def test_unresolved_upload_yields_pending_asset(stub_mux, make_video) -> None:
    client = stub_mux(links=[UploadLink(upload_handle="up_1", status="waiting", asset_id=None)])

    result = await UploadOrchestrator(client).upload(make_video())

    assert result.asset == PendingAsset(upload_handle="up_1")
    assert result.asset_id is None


@pytest.mark.asyncio
async def test_link_lookup_error_does_not_fail_the_upload(stub_mux, make_video) -> None:
    client = stub_mux(links=[MuxApiError("not_found", "no such upload", status_code=404)])

    result = await UploadOrchestrator(client).upload(make_video())

    assert isinstance(result.asset, PendingAsset)
