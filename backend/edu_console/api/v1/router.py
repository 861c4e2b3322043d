from __future__ import annotations

from fastapi import APIRouter

from edu_console.api.v1 import mux, videos

# Mounted under /api so the browser-facing Mux routes live at /api/mux.
mux_router = APIRouter()
mux_router.include_router(mux.router)

api_router = APIRouter()
api_router.include_router(videos.router)
