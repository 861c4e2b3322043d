from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from edu_console.api.errors import to_http_exception
from edu_console.core.errors import MuxNotConfigured, StoreError, TenantError
from edu_console.core.settings import Settings, get_settings
from edu_console.mux.client import MuxClient
from edu_console.store.base import RelationalStore
from edu_console.tenants.directory import TenantDirectory, TenantStores


def get_mux_client(settings: Settings = Depends(get_settings)) -> MuxClient:
    try:
        return MuxClient.from_settings(settings)
    except MuxNotConfigured as e:
        raise to_http_exception(e)


def get_tenant_stores(request: Request, settings: Settings = Depends(get_settings)) -> TenantStores:
    # One registry per app so cached tenant connections are shared across requests.
    stores = getattr(request.app.state, "tenant_stores", None)
    if stores is not None:
        return stores
    if not settings.tenant_directory_url:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Tenant directory is not configured",
        )
    stores = TenantStores(TenantDirectory.from_settings(settings), timeout=settings.store_timeout_seconds)
    request.app.state.tenant_stores = stores
    return stores


async def get_tenant_store(
    tenant_id: str,
    stores: TenantStores = Depends(get_tenant_stores),
) -> RelationalStore:
    try:
        return await stores.get(tenant_id)
    except (TenantError, StoreError) as e:
        raise to_http_exception(e)
