from __future__ import annotations

import argparse
import asyncio

from edu_console.core.logging import setup_logging
from edu_console.core.settings import get_settings
from edu_console.mux.client import MuxClient
from edu_console.pipeline.commit import TABLE_PROFILES, get_table_profile
from edu_console.pipeline.reconcile import VideoReconciler
from edu_console.tenants.directory import TenantDirectory, TenantStores


async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Fill in playback ids for rows saved while their Mux asset was still processing."
    )
    parser.add_argument("--tenant", required=True, help="Tenant id in the credential directory")
    parser.add_argument("--table", choices=sorted(TABLE_PROFILES), required=True)
    parser.add_argument("--asset-id", default=None, help="Only reconcile this asset")
    parser.add_argument("--limit", type=int, default=200)
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    client = MuxClient.from_settings(settings)
    stores = TenantStores(TenantDirectory.from_settings(settings), timeout=settings.store_timeout_seconds)
    profile = get_table_profile(args.table)

    try:
        store = await stores.get(args.tenant)
        reconciler = VideoReconciler(client, store)
        if args.asset_id:
            results = [await reconciler.reconcile(profile, args.asset_id)]
        else:
            results = await reconciler.reconcile_pending(profile, limit=args.limit)
    finally:
        await stores.close_all()

    if not results:
        print("Nothing to reconcile.")
        return
    for r in results:
        label = r.asset_id or f"upload {r.upload_handle}"
        print(f"{label}: status={r.status} playback_id={r.stream_id or '-'} rows_updated={r.rows_updated}")


if __name__ == "__main__":
    asyncio.run(main())
