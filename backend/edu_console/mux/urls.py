from __future__ import annotations

from typing import Literal
from urllib.parse import urlencode

LOCATOR_SCHEME = "mux"


def video_locator(identifier: str) -> str:
    """
    Build the `mux://<id>` locator stored in `video_url` columns.

    The id is a stream (playback) id once known, otherwise the asset id, so a
    stored record can always be re-resolved later.
    """
    ident = (identifier or "").strip()
    if not ident:
        raise ValueError("identifier is required")
    return f"{LOCATOR_SCHEME}://{ident}"


def parse_locator(url: str | None) -> str | None:
    s = (url or "").strip()
    prefix = f"{LOCATOR_SCHEME}://"
    if not s.startswith(prefix):
        return None
    return s[len(prefix):].strip() or None


def playback_url(stream_id: str) -> str:
    sid = (stream_id or "").strip()
    if not sid:
        raise ValueError("stream_id is required")
    return f"https://stream.mux.com/{sid}.m3u8"


def thumbnail_url(
    stream_id: str,
    *,
    width: int | None = None,
    height: int | None = None,
    fit_mode: Literal["preserve", "crop", "pad"] | None = None,
    time: float | None = None,
) -> str:
    sid = (stream_id or "").strip()
    if not sid:
        raise ValueError("stream_id is required")

    base = f"https://image.mux.com/{sid}/thumbnail.jpg"
    params: dict[str, str] = {}
    if width:
        params["width"] = str(int(width))
    if height:
        params["height"] = str(int(height))
    if fit_mode:
        params["fit_mode"] = fit_mode
    if time is not None:
        params["time"] = str(time)

    if not params:
        return base
    return f"{base}?{urlencode(params)}"
