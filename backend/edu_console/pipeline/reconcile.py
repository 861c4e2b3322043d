from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from edu_console.core.errors import MuxApiError, StoreError
from edu_console.mux.client import MuxClient
from edu_console.mux.urls import parse_locator, video_locator
from edu_console.pipeline.commit import ASSET_ID_COLUMN, STREAM_ID_COLUMN, VIDEO_URL_COLUMN, TableProfile
from edu_console.store.base import RelationalStore

logger = logging.getLogger(__name__)

WAITING_FOR_ASSET = "waiting_for_asset"


@dataclass(frozen=True)
class ReconcileResult:
    asset_id: str | None
    status: str
    stream_id: str | None
    rows_updated: int
    upload_handle: str | None = None


class VideoReconciler:
    """
    Fill in video fields for rows saved before their asset was ready.

    Rows that know their asset id get the stream id and locator. Rows saved while
    the upload was still unlinked (``mux_asset_id`` empty, ``video_url`` pointing at
    the upload handle) are first linked to their asset through the upload.
    """

    def __init__(self, client: MuxClient, store: RelationalStore):
        self._client = client
        self._store = store

    async def reconcile(self, profile: TableProfile, asset_id: str) -> ReconcileResult:
        asset = await self._client.get_asset(asset_id)
        stream_id = asset.first_stream_id
        if asset.status != "ready" or not stream_id:
            return ReconcileResult(asset_id=asset_id, status=asset.status, stream_id=None, rows_updated=0)

        count = await self._store.update(
            profile.name,
            {VIDEO_URL_COLUMN: video_locator(stream_id), STREAM_ID_COLUMN: stream_id},
            match={ASSET_ID_COLUMN: asset_id},
        )
        logger.info("Reconciled %s rows in %s for asset %s -> %s", count, profile.name, asset_id, stream_id)
        return ReconcileResult(asset_id=asset_id, status=asset.status, stream_id=stream_id, rows_updated=count)

    async def reconcile_upload(self, profile: TableProfile, upload_handle: str) -> ReconcileResult:
        link = await self._client.get_upload_link(upload_handle)
        if not link.asset_id:
            status = link.status if link.failed and link.status else WAITING_FOR_ASSET
            return ReconcileResult(
                asset_id=None, status=status, stream_id=None, rows_updated=0, upload_handle=upload_handle
            )

        linked = await self._store.update(
            profile.name,
            {ASSET_ID_COLUMN: link.asset_id},
            match={VIDEO_URL_COLUMN: video_locator(upload_handle), ASSET_ID_COLUMN: None},
        )
        logger.info("Linked %s rows in %s from upload %s to asset %s", linked, profile.name, upload_handle, link.asset_id)

        result = await self.reconcile(profile, link.asset_id)
        return replace(result, rows_updated=max(linked, result.rows_updated), upload_handle=upload_handle)

    async def reconcile_pending(self, profile: TableProfile, *, limit: int = 200) -> list[ReconcileResult]:
        rows = await self._store.select(
            profile.name,
            columns=("id", ASSET_ID_COLUMN, VIDEO_URL_COLUMN),
            match={STREAM_ID_COLUMN: None},
            order_by=profile.order_column,
            descending=True,
            limit=limit,
        )
        asset_ids = sorted({str(r[ASSET_ID_COLUMN]) for r in rows if r.get(ASSET_ID_COLUMN)})
        # Unlinked rows carry the upload handle in their locator.
        pending_handles: set[str] = set()
        for r in rows:
            if not r.get(ASSET_ID_COLUMN):
                handle = parse_locator(r.get(VIDEO_URL_COLUMN))
                if handle:
                    pending_handles.add(handle)

        results: list[ReconcileResult] = []
        for handle in sorted(pending_handles):
            try:
                result = await self.reconcile_upload(profile, handle)
            except (MuxApiError, StoreError) as e:
                logger.warning("Could not reconcile upload %s: %s", handle, e)
                result = ReconcileResult(
                    asset_id=None, status="lookup_failed", stream_id=None, rows_updated=0, upload_handle=handle
                )
            results.append(result)
            if result.asset_id in asset_ids:
                asset_ids.remove(result.asset_id)

        for asset_id in asset_ids:
            try:
                results.append(await self.reconcile(profile, asset_id))
            except (MuxApiError, StoreError) as e:
                logger.warning("Could not reconcile asset %s: %s", asset_id, e)
                results.append(ReconcileResult(asset_id=asset_id, status="lookup_failed", stream_id=None, rows_updated=0))
        return results
