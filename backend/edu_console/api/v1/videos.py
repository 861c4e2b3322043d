from __future__ import annotations

import asyncio
import json
import logging
import re
import tempfile
from pathlib import Path
from typing import Any, BinaryIO

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from edu_console.api.deps import get_mux_client, get_tenant_store, get_tenant_stores
from edu_console.api.errors import to_http_exception
from edu_console.core.errors import FileTooLarge, IngestError, MuxApiError, StoreError, TenantError
from edu_console.core.settings import Settings, get_settings
from edu_console.mux.client import MuxClient
from edu_console.pipeline.commit import TableProfile, get_table_profile
from edu_console.pipeline.files import LocalVideoFile
from edu_console.pipeline.ingest import VideoIngestPipeline
from edu_console.pipeline.reconcile import VideoReconciler
from edu_console.schemas.video import IngestOutcomePublic, ReconcilePublic
from edu_console.store.base import RelationalStore
from edu_console.tenants.directory import TenantStores

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["videos"])

_FILENAME_SAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _sanitize_filename(name: str) -> str:
    base = (name or "").split("/")[-1].split("\\")[-1].strip()
    base = _FILENAME_SAFE_RE.sub("_", base)
    base = base.strip("._-")
    if not base:
        return "video"
    return base[:120]


def _profile_or_400(table: str) -> TableProfile:
    try:
        return get_table_profile(table)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _json_object(raw: str | None, *, name: str) -> dict[str, Any] | None:
    if raw is None or not raw.strip():
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{name} must be valid JSON")
    if not isinstance(value, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{name} must be a JSON object")
    return value


def _spool(src: BinaryIO, dest: Path, *, chunk_size: int, max_bytes: int) -> int:
    written = 0
    with dest.open("wb") as out:
        while True:
            chunk = src.read(chunk_size)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise FileTooLarge(written, max_bytes)
            out.write(chunk)
    return written


@router.post("/videos", response_model=IngestOutcomePublic)
async def ingest_video(
    tenant_id: str,
    file: UploadFile = File(...),
    table: str = Form(...),
    fields: str = Form("{}"),
    settings_json: str | None = Form(default=None, alias="settings"),
    store: RelationalStore = Depends(get_tenant_store),
    client: MuxClient = Depends(get_mux_client),
    settings: Settings = Depends(get_settings),
) -> IngestOutcomePublic:
    profile = _profile_or_400(table)
    record_fields = _json_object(fields, name="fields") or {}
    record_settings = _json_object(settings_json, name="settings")

    missing = [c for c in profile.match_columns if record_fields.get(c) in (None, "")]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing required field(s) for {profile.name}: {', '.join(missing)}",
        )

    pipeline = VideoIngestPipeline.from_settings(settings, client=client, store=store)

    with tempfile.TemporaryDirectory(prefix="edu-console-") as tmp:
        path = Path(tmp) / _sanitize_filename(file.filename or "")
        try:
            await asyncio.to_thread(
                _spool,
                file.file,
                path,
                chunk_size=settings.transfer_chunk_size_bytes,
                max_bytes=settings.video_max_size_bytes,
            )
            video = LocalVideoFile.from_path(path, filename=file.filename, mime_type=file.content_type)
            logger.info(
                "Ingesting %s (%s, %d bytes) into %s for tenant %s",
                video.filename,
                video.mime_type,
                video.size_bytes,
                profile.name,
                tenant_id,
            )
            outcome = await pipeline.run(
                video,
                table=profile,
                fields=record_fields,
                settings=record_settings,
            )
        except IngestError as e:
            logger.warning("Video ingest for tenant %s failed: %s", tenant_id, e)
            raise to_http_exception(e)
        finally:
            await file.close()

    return IngestOutcomePublic.from_outcome(outcome)


@router.post("/videos/{asset_id}/reconcile", response_model=ReconcilePublic)
async def reconcile_video(
    asset_id: str,
    table: str = Query(...),
    store: RelationalStore = Depends(get_tenant_store),
    client: MuxClient = Depends(get_mux_client),
) -> ReconcilePublic:
    profile = _profile_or_400(table)
    try:
        result = await VideoReconciler(client, store).reconcile(profile, asset_id)
    except (MuxApiError, StoreError) as e:
        raise to_http_exception(e)
    return ReconcilePublic.from_result(result)


@router.post("/videos/reconcile", response_model=list[ReconcilePublic])
async def reconcile_pending_videos(
    table: str = Query(...),
    limit: int = Query(default=200, ge=1, le=1000),
    store: RelationalStore = Depends(get_tenant_store),
    client: MuxClient = Depends(get_mux_client),
) -> list[ReconcilePublic]:
    profile = _profile_or_400(table)
    try:
        results = await VideoReconciler(client, store).reconcile_pending(profile, limit=limit)
    except StoreError as e:
        raise to_http_exception(e)
    return [ReconcilePublic.from_result(r) for r in results]


@router.get("/store/health")
async def tenant_store_health(tenant_id: str, stores: TenantStores = Depends(get_tenant_stores)):
    try:
        ok = await stores.ping(tenant_id)
    except (TenantError, StoreError) as e:
        raise to_http_exception(e)
    return {"ok": ok}


@router.delete("/store", status_code=status.HTTP_204_NO_CONTENT)
async def clear_tenant_store(tenant_id: str, stores: TenantStores = Depends(get_tenant_stores)) -> None:
    await stores.clear(tenant_id)
