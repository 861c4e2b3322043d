from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from edu_console.api.deps import get_mux_client
from edu_console.api.errors import to_http_exception
from edu_console.core.errors import MuxApiError
from edu_console.core.settings import Settings, get_settings
from edu_console.mux.client import MuxClient
from edu_console.schemas.video import AssetPublic, UploadLinkPublic, UploadSlotPublic

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mux", tags=["mux"])


@router.post("/upload", response_model=UploadSlotPublic)
async def create_upload(client: MuxClient = Depends(get_mux_client)) -> UploadSlotPublic:
    try:
        slot = await client.create_upload_slot()
    except MuxApiError as e:
        logger.error("Mux upload creation failed: %s", e)
        raise to_http_exception(e)
    return UploadSlotPublic(uploadId=slot.upload_handle, uploadUrl=slot.upload_target_url)


@router.get("/upload/{upload_id}", response_model=UploadLinkPublic)
async def get_upload(upload_id: str, client: MuxClient = Depends(get_mux_client)) -> UploadLinkPublic:
    if not upload_id.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Upload ID is required")
    try:
        link = await client.get_upload_link(upload_id)
    except MuxApiError as e:
        raise to_http_exception(e)
    return UploadLinkPublic(id=link.upload_handle, status=link.status, assetId=link.asset_id)


@router.get("/asset/{asset_id}", response_model=AssetPublic)
async def get_asset(asset_id: str, client: MuxClient = Depends(get_mux_client)) -> AssetPublic:
    if not asset_id.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Asset ID is required")
    try:
        asset = await client.get_asset(asset_id)
    except MuxApiError as e:
        raise to_http_exception(e)
    return AssetPublic.from_asset(asset)


@router.get("/test")
async def test_connection(
    client: MuxClient = Depends(get_mux_client),
    settings: Settings = Depends(get_settings),
):
    try:
        assets = await client.list_assets(limit=1)
    except MuxApiError as e:
        logger.error("Mux connection test failed: %s", e)
        raise to_http_exception(e)

    token_id = str(settings.mux_token_id or "")
    return {
        "ok": True,
        "assetsCount": len(assets),
        "tokenId": f"{token_id[:8]}..." if token_id else None,
    }
