from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Union

from edu_console.core.errors import FileTooLarge, MuxApiError, TransferFailed, UploadRejected
from edu_console.core.settings import Settings
from edu_console.mux.client import MuxClient
from edu_console.pipeline.files import LocalVideoFile

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

PROGRESS_SLOT_CREATED = 10
PROGRESS_TRANSFERRED = 90
PROGRESS_DONE = 100


@dataclass(frozen=True)
class PendingAsset:
    """Upload finished but the service has not linked it to an asset yet."""

    upload_handle: str


@dataclass(frozen=True)
class ResolvedAsset:
    asset_id: str


AssetRef = Union[PendingAsset, ResolvedAsset]


@dataclass
class UploadSession:
    upload_handle: str | None = None
    upload_target_url: str | None = None
    transfer_progress: int = 0
    asset: AssetRef | None = None
    stream_id: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class UploadResult:
    upload_handle: str
    asset: AssetRef

    @property
    def asset_id(self) -> str | None:
        return self.asset.asset_id if isinstance(self.asset, ResolvedAsset) else None


class UploadOrchestrator:
    def __init__(
        self,
        client: MuxClient,
        *,
        max_size_bytes: int = 10 * 1024**3,
        chunk_size: int = 8 * 1024 * 1024,
    ):
        self._client = client
        self._max_size_bytes = max_size_bytes
        self._chunk_size = chunk_size

    @classmethod
    def from_settings(cls, client: MuxClient, settings: Settings) -> "UploadOrchestrator":
        return cls(
            client,
            max_size_bytes=settings.video_max_size_bytes,
            chunk_size=settings.transfer_chunk_size_bytes,
        )

    def validate(self, file: LocalVideoFile) -> None:
        if not file.is_video:
            raise UploadRejected(file.mime_type)
        if file.size_bytes > self._max_size_bytes:
            raise FileTooLarge(file.size_bytes, self._max_size_bytes)

    async def upload(
        self,
        file: LocalVideoFile,
        *,
        on_progress: ProgressCallback | None = None,
        session: UploadSession | None = None,
    ) -> UploadResult:
        session = session if session is not None else UploadSession()

        def report(pct: int) -> None:
            session.transfer_progress = pct
            if on_progress is not None:
                on_progress(pct)

        try:
            self.validate(file)

            try:
                slot = await self._client.create_upload_slot()
            except MuxApiError as e:
                raise TransferFailed(f"Failed to create upload URL: {e}", status_code=e.status_code) from e
            session.upload_handle = slot.upload_handle
            session.upload_target_url = slot.upload_target_url
            report(PROGRESS_SLOT_CREATED)

            def on_bytes(sent: int) -> None:
                if file.size_bytes <= 0:
                    return
                span = PROGRESS_TRANSFERRED - PROGRESS_SLOT_CREATED
                pct = PROGRESS_SLOT_CREATED + int(span * min(sent, file.size_bytes) / file.size_bytes)
                if pct > session.transfer_progress and pct < PROGRESS_TRANSFERRED:
                    report(pct)

            await self._client.transfer(
                upload_target_url=slot.upload_target_url,
                file=file,
                chunk_size=self._chunk_size,
                on_bytes=on_bytes,
            )
            report(PROGRESS_TRANSFERRED)

            asset = await self._resolve_asset(slot.upload_handle)
            session.asset = asset
            report(PROGRESS_DONE)
            logger.info("Upload %s completed, asset=%s", slot.upload_handle, asset)
            return UploadResult(upload_handle=slot.upload_handle, asset=asset)
        except Exception as e:
            session.error_message = str(e)
            raise

    async def _resolve_asset(self, upload_handle: str) -> AssetRef:
        # Some lookups only work once the asset exists; the poller finishes the job.
        try:
            link = await self._client.get_upload_link(upload_handle)
        except MuxApiError as e:
            logger.warning("Could not resolve asset for upload %s yet, will poll: %s", upload_handle, e)
            return PendingAsset(upload_handle=upload_handle)
        if link.asset_id:
            return ResolvedAsset(asset_id=link.asset_id)
        return PendingAsset(upload_handle=upload_handle)
