from __future__ import annotations

import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class LocalVideoFile:
    path: Path
    filename: str
    mime_type: str
    size_bytes: int

    @classmethod
    def from_path(
        cls,
        path: str | os.PathLike[str],
        *,
        filename: str | None = None,
        mime_type: str | None = None,
    ) -> "LocalVideoFile":
        p = Path(path)
        name = (filename or "").strip() or p.name
        mt = (mime_type or "").strip().lower()
        if not mt or mt == "application/octet-stream":
            mt = (mimetypes.guess_type(name)[0] or mt or "application/octet-stream").lower()
        return cls(path=p, filename=name, mime_type=mt, size_bytes=p.stat().st_size)

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")
