from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from edu_console.core.errors import AssetLookupFailed, MuxApiError, PollingTimeout, ProcessingFailed
from edu_console.core.settings import Settings
from edu_console.mux.client import MuxClient
from edu_console.pipeline.upload import AssetRef, PendingAsset, ResolvedAsset
from edu_console.schemas.mux import MediaAsset

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, "MediaAsset | None"], None]

WAITING_FOR_ASSET = "waiting_for_asset"


def _lookup_failed(ident: str, err: MuxApiError) -> AssetLookupFailed:
    if err.reason == "not_found":
        msg = f"Asset '{ident}' not found. Upload may have failed."
    elif err.reason in {"unauthorized", "forbidden"}:
        msg = "Mux credentials invalid or lacking permission."
    else:
        msg = f"Asset retrieval failed: {err}"
    return AssetLookupFailed(ident, err.reason, msg)


class PollHandle:
    """
    A running poll. `await handle.result()` for the asset, `handle.cancel()`
    to stop early. Used as an async context manager it cancels on exit, so a
    caller that goes away never leaves the loop running.
    """

    def __init__(self, task: asyncio.Task[MediaAsset]):
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def result(self) -> MediaAsset:
        return await self._task

    async def __aenter__(self) -> "PollHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()
        # Reap the task; its outcome was either consumed via result() or is being discarded.
        await asyncio.gather(self._task, return_exceptions=True)


class AssetStatusPoller:
    """Fixed-interval status checks until ready / errored / attempt budget spent."""

    def __init__(
        self,
        client: MuxClient,
        *,
        interval_seconds: float = 2.0,
        max_attempts: int = 150,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._client = client
        self._interval = interval_seconds
        self._max_attempts = max_attempts
        self._sleep = sleep

    @classmethod
    def from_settings(cls, client: MuxClient, settings: Settings) -> "AssetStatusPoller":
        return cls(
            client,
            interval_seconds=settings.poll_interval_seconds,
            max_attempts=settings.poll_max_attempts,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def start(self, ref: AssetRef | str, on_status: StatusCallback | None = None) -> PollHandle:
        return PollHandle(asyncio.create_task(self.poll(ref, on_status)))

    async def poll(self, ref: AssetRef | str, on_status: StatusCallback | None = None) -> MediaAsset:
        if isinstance(ref, str):
            ref = ResolvedAsset(asset_id=ref)

        asset_id = ref.asset_id.strip() if isinstance(ref, ResolvedAsset) else None
        handle = ref.upload_handle.strip() if isinstance(ref, PendingAsset) else None
        if not asset_id and not handle:
            raise AssetLookupFailed("", "invalid_id", "Invalid ID provided")

        logger.info("Polling asset status for %s", asset_id or f"upload {handle}")
        for attempt in range(1, self._max_attempts + 1):
            await self._sleep(self._interval)

            if asset_id is None:
                try:
                    link = await self._client.get_upload_link(str(handle))
                except MuxApiError as e:
                    raise _lookup_failed(str(handle), e) from e
                if link.failed:
                    raise ProcessingFailed(str(handle), f"Upload {handle} ended with status {link.status}")
                if not link.asset_id:
                    logger.debug("Poll %d/%d: upload %s not linked yet", attempt, self._max_attempts, handle)
                    if on_status is not None:
                        on_status(WAITING_FOR_ASSET, None)
                    continue
                asset_id = link.asset_id

            try:
                asset = await self._client.get_asset(asset_id)
            except MuxApiError as e:
                raise _lookup_failed(asset_id, e) from e

            logger.debug("Poll %d/%d: asset %s is %s", attempt, self._max_attempts, asset_id, asset.status)
            if on_status is not None:
                on_status(asset.raw_status or asset.status, asset)

            if asset.status == "ready":
                logger.info("Asset %s ready, playback ids: %s", asset_id, asset.stream_ids)
                return asset
            if asset.status == "errored":
                raise ProcessingFailed(asset_id)

        raise PollingTimeout(asset_id or str(handle), self._max_attempts, resolved_asset_id=asset_id)
