from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal

from edu_console.core.errors import AssetLookupFailed, DurationDetectionFailed, PollingTimeout
from edu_console.core.settings import Settings
from edu_console.mux.client import MuxClient
from edu_console.pipeline.commit import CommitDraft, CommitResult, PersistenceCommitter, TableProfile, VideoRecord
from edu_console.pipeline.duration import DurationEstimate, resolve_duration
from edu_console.pipeline.files import LocalVideoFile
from edu_console.pipeline.poller import AssetStatusPoller, StatusCallback
from edu_console.pipeline.probe import DurationProber
from edu_console.pipeline.upload import AssetRef, ProgressCallback, ResolvedAsset, UploadOrchestrator
from edu_console.schemas.mux import MediaAsset
from edu_console.store.base import RelationalStore

logger = logging.getLogger(__name__)

ProcessingState = Literal["ready", "background"]


@dataclass(frozen=True)
class IngestOutcome:
    upload_handle: str
    asset_id: str | None
    stream_id: str | None
    duration: DurationEstimate
    processing_state: ProcessingState
    processing_note: str | None
    video: VideoRecord
    commit: CommitResult


class VideoIngestPipeline:
    """
    file -> probe (best effort) + upload (fatal) -> poll (timeout is not fatal) -> commit.

    Probing runs alongside the upload; polling only starts once the transfer
    has finished and an asset reference (resolved or pending) exists.
    """

    def __init__(
        self,
        *,
        prober: DurationProber,
        uploader: UploadOrchestrator,
        poller: AssetStatusPoller,
        committer: PersistenceCommitter,
        default_duration_seconds: int = 60,
    ):
        self._prober = prober
        self._uploader = uploader
        self._poller = poller
        self._committer = committer
        self._default_duration_seconds = default_duration_seconds

    @classmethod
    def from_settings(cls, settings: Settings, *, client: MuxClient, store: RelationalStore) -> "VideoIngestPipeline":
        return cls(
            prober=DurationProber.from_settings(settings),
            uploader=UploadOrchestrator.from_settings(client, settings),
            poller=AssetStatusPoller.from_settings(client, settings),
            committer=PersistenceCommitter(store),
            default_duration_seconds=settings.default_duration_seconds,
        )

    async def _probe(self, file: LocalVideoFile) -> float | None:
        try:
            seconds = await self._prober.probe(file)
        except DurationDetectionFailed as e:
            logger.warning("Duration detection failed for %s, will use service or default duration: %s", file.filename, e)
            return None
        logger.info("Local duration for %s: %.3fs", file.filename, seconds)
        return seconds

    async def run(
        self,
        file: LocalVideoFile,
        *,
        table: str | TableProfile,
        fields: dict[str, Any],
        settings: dict[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
        on_status: StatusCallback | None = None,
    ) -> IngestOutcome:
        # Reject bad input before spending anything on probing.
        self._uploader.validate(file)

        probe_task = asyncio.create_task(self._probe(file))
        try:
            upload = await self._uploader.upload(file, on_progress=on_progress)
        except BaseException:
            probe_task.cancel()
            await asyncio.gather(probe_task, return_exceptions=True)
            raise
        local_seconds = await probe_task

        asset_ref: AssetRef = upload.asset
        snapshot: MediaAsset | None = None
        note: str | None = None

        async with self._poller.start(asset_ref, on_status) as handle:
            try:
                snapshot = await handle.result()
            except PollingTimeout as e:
                logger.warning("Upload %s succeeded but processing is still running: %s", upload.upload_handle, e)
                note = "Video uploaded; processing may take a few more minutes."
                if e.resolved_asset_id:
                    asset_ref = ResolvedAsset(asset_id=e.resolved_asset_id)
            except AssetLookupFailed as e:
                logger.warning("Asset polling stopped for upload %s (%s): %s", upload.upload_handle, e.reason, e)
                note = str(e)

        stream_id: str | None = None
        if snapshot is not None:
            asset_ref = ResolvedAsset(asset_id=snapshot.asset_id)
            stream_id = snapshot.first_stream_id
            if stream_id is None:
                note = "Video ready; playback id not published yet."

        duration = resolve_duration(
            service_seconds=snapshot.duration_seconds if snapshot is not None else None,
            local_seconds=local_seconds,
            default_seconds=self._default_duration_seconds,
        )
        logger.info("Duration for %s: %s (%s)", file.filename, duration.display(), duration.source)

        video = VideoRecord.build(asset=asset_ref, stream_id=stream_id, duration=duration)
        result = await self._committer.commit(CommitDraft(fields=dict(fields), video=video, settings=settings), table)

        return IngestOutcome(
            upload_handle=upload.upload_handle,
            asset_id=video.asset_id,
            stream_id=stream_id,
            duration=duration,
            processing_state="ready" if stream_id else "background",
            processing_note=note,
            video=video,
            commit=result,
        )
