from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from edu_console.core.errors import StoreError, TenantConfigIncomplete, TenantNotFound
from edu_console.core.settings import Settings
from edu_console.store.base import RelationalStore
from edu_console.store.postgrest import PostgrestStore
from edu_console.store.sql import SqlStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantCredentials:
    url: str
    key: str


class TenantDirectory:
    """
    Per-tenant store credentials kept in a Firebase Realtime Database.

    Entries live at `<directory_url>/<path>/<tenant_id>.json` and look like
    `{"supabaseUrl": "...", "supabaseKey": "..."}`.
    """

    def __init__(
        self,
        *,
        directory_url: str,
        auth: str | None = None,
        path: str = "user",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base = directory_url.rstrip("/")
        self._auth = auth
        self._path = path.strip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "TenantDirectory":
        if not settings.tenant_directory_url:
            raise RuntimeError("Tenant directory is not configured (TENANT_DIRECTORY_URL missing)")
        return cls(
            directory_url=settings.tenant_directory_url,
            auth=settings.tenant_directory_auth,
            path=settings.tenant_directory_path,
            timeout=settings.store_timeout_seconds,
            **kwargs,
        )

    async def lookup(self, tenant_id: str) -> TenantCredentials:
        tid = (tenant_id or "").strip()
        if not tid or "/" in tid or "." in tid:
            raise TenantNotFound(tenant_id)

        params = {"auth": self._auth} if self._auth else None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                res = await client.get(f"{self._base}/{self._path}/{tid}.json", params=params)
                res.raise_for_status()
                data = res.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StoreError("transport", f"Tenant directory lookup failed: {e}") from e

        if not data:
            raise TenantNotFound(tid)
        if not isinstance(data, dict):
            raise TenantConfigIncomplete(tid)

        url = str(data.get("supabaseUrl") or "").strip()
        key = str(data.get("supabaseKey") or "").strip()
        if not url or not key:
            raise TenantConfigIncomplete(tid)
        return TenantCredentials(url=url, key=key)


def open_store(credentials: TenantCredentials, *, timeout: float = 15.0) -> RelationalStore:
    # Self-hosted tenants may hand out a direct database URL instead of a REST endpoint.
    if credentials.url.startswith("postgresql"):
        return SqlStore(url=credentials.url)
    return PostgrestStore(url=credentials.url, key=credentials.key, timeout=timeout)


class TenantStores:
    """One cached store per tenant; cleared explicitly (e.g. on logout or credential rotation)."""

    def __init__(self, directory: TenantDirectory, *, timeout: float = 15.0):
        self._directory = directory
        self._timeout = timeout
        self._stores: dict[str, RelationalStore] = {}
        # One lock per tenant: a slow directory lookup only holds up that tenant.
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        return self._locks.setdefault(tenant_id, asyncio.Lock())

    async def get(self, tenant_id: str) -> RelationalStore:
        store = self._stores.get(tenant_id)
        if store is not None:
            return store
        async with self._lock_for(tenant_id):
            store = self._stores.get(tenant_id)
            if store is not None:
                return store
            creds = await self._directory.lookup(tenant_id)
            store = open_store(creds, timeout=self._timeout)
            self._stores[tenant_id] = store
            logger.info("Opened store for tenant %s", tenant_id)
            return store

    async def clear(self, tenant_id: str) -> None:
        async with self._lock_for(tenant_id):
            store = self._stores.pop(tenant_id, None)
        if store is not None:
            await store.aclose()

    async def ping(self, tenant_id: str) -> bool:
        store = await self.get(tenant_id)
        try:
            await store.select("courses", columns=("id",), limit=1)
        except StoreError as e:
            logger.warning("Store connection test failed for tenant %s: %s", tenant_id, e)
            return False
        return True

    async def close_all(self) -> None:
        stores = list(self._stores.values())
        self._stores.clear()
        for store in stores:
            await store.aclose()
