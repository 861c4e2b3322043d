from __future__ import annotations

import asyncio
import json
import logging
import math
import struct
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, BinaryIO

from edu_console.core.errors import DurationDetectionFailed
from edu_console.core.settings import Settings
from edu_console.pipeline.files import LocalVideoFile

logger = logging.getLogger(__name__)

# ISO-BMFF containers whose children we descend into while looking for mvhd.
_CONTAINER_BOXES = {b"moov"}


def _valid_seconds(value: Any) -> float | None:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds


def _parse_clock(value: Any) -> float | None:
    # Matroska writes DURATION tags as HH:MM:SS.fffffffff.
    s = str(value or "").strip()
    parts = s.split(":")
    if len(parts) != 3:
        return None
    try:
        hh, mm = int(parts[0]), int(parts[1])
        ss = float(parts[2])
    except ValueError:
        return None
    return _valid_seconds(hh * 3600 + mm * 60 + ss)


def duration_from_ffprobe_json(payload: dict[str, Any]) -> float:
    """
    Pick a duration out of ffprobe's JSON output.

    Checked in order, first valid wins: container duration, first stream
    duration, DURATION tag. A present-but-invalid value (N/A, 0, negative)
    does not stop the search, but nothing valid at all fails immediately.
    """
    fmt = payload.get("format") or {}
    seconds = _valid_seconds(fmt.get("duration"))
    if seconds is not None:
        return seconds

    for stream in payload.get("streams") or []:
        if isinstance(stream, dict):
            seconds = _valid_seconds(stream.get("duration"))
            if seconds is not None:
                return seconds

    tags = fmt.get("tags") or {}
    seconds = _parse_clock(tags.get("DURATION") or tags.get("duration"))
    if seconds is not None:
        return seconds

    raise DurationDetectionFailed("Invalid video duration detected")


def _read_box_header(fh: BinaryIO) -> tuple[int, bytes, int] | None:
    """Return (box_size, box_type, header_size), or None at EOF."""
    header = fh.read(8)
    if len(header) < 8:
        return None
    size, box_type = struct.unpack(">I4s", header)
    header_size = 8
    if size == 1:
        large = fh.read(8)
        if len(large) < 8:
            return None
        size = struct.unpack(">Q", large)[0]
        header_size = 16
    elif size == 0:
        # Box extends to end of file.
        here = fh.tell()
        fh.seek(0, 2)
        size = fh.tell() - here + header_size
        fh.seek(here)
    return size, box_type, header_size


def _find_mvhd(fh: BinaryIO, end: int) -> float | None:
    while fh.tell() < end:
        start = fh.tell()
        box = _read_box_header(fh)
        if box is None:
            return None
        size, box_type, header_size = box
        if size < header_size:
            raise DurationDetectionFailed("Corrupt MP4 box structure")

        if box_type == b"mvhd":
            version = fh.read(1)
            if not version:
                return None
            fh.read(3)  # flags
            if version[0] == 1:
                raw = fh.read(28)
                if len(raw) < 28:
                    return None
                _, _, timescale, duration = struct.unpack(">QQIQ", raw)
            else:
                raw = fh.read(16)
                if len(raw) < 16:
                    return None
                _, _, timescale, duration = struct.unpack(">IIII", raw)
            if not timescale:
                return None
            return duration / timescale

        if box_type in _CONTAINER_BOXES:
            found = _find_mvhd(fh, start + size)
            if found is not None:
                return found

        fh.seek(start + size)
    return None


def read_mp4_duration(path: Path) -> float:
    """Read movie duration from the mvhd box of an MP4/MOV file, without external tools."""
    with path.open("rb") as fh:
        fh.seek(0, 2)
        end = fh.tell()
        fh.seek(0)
        first = _read_box_header(fh)
        if first is None or first[1] not in {b"ftyp", b"moov", b"mdat", b"free", b"wide", b"skip"}:
            raise DurationDetectionFailed("Unsupported container for header probe")
        fh.seek(0)
        seconds = _find_mvhd(fh, end)

    valid = _valid_seconds(seconds)
    if valid is None:
        raise DurationDetectionFailed("Invalid video duration detected")
    return valid


class DurationProber:
    """
    Best-effort local duration detection.

    Primary: ffprobe subprocess (15s). Fallback: in-process MP4 header read
    (10s). Either way callers get seconds or DurationDetectionFailed.
    """

    def __init__(
        self,
        *,
        ffprobe_bin: str = "ffprobe",
        primary_timeout: float = 15.0,
        fallback_timeout: float = 10.0,
    ):
        self._ffprobe_bin = ffprobe_bin
        self._primary_timeout = primary_timeout
        self._fallback_timeout = fallback_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "DurationProber":
        return cls(
            ffprobe_bin=settings.ffprobe_bin,
            primary_timeout=settings.probe_primary_timeout_seconds,
            fallback_timeout=settings.probe_fallback_timeout_seconds,
        )

    async def probe(self, file: LocalVideoFile) -> float:
        if file.size_bytes <= 0:
            raise DurationDetectionFailed("Video file is empty")

        try:
            return await self.probe_primary(file)
        except DurationDetectionFailed as primary_error:
            logger.warning("ffprobe duration detection failed for %s, trying header probe: %s", file.filename, primary_error)

        try:
            return await self.probe_fallback(file)
        except DurationDetectionFailed as fallback_error:
            logger.warning("All duration detection methods failed for %s: %s", file.filename, fallback_error)
            raise

    @asynccontextmanager
    async def _ffprobe(self, path: Path):
        try:
            proc = await asyncio.create_subprocess_exec(
                self._ffprobe_bin,
                "-v",
                "error",
                "-print_format",
                "json",
                "-show_entries",
                "format=duration:stream=duration:format_tags=DURATION",
                str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise DurationDetectionFailed(f"Could not start ffprobe: {e}") from e
        try:
            yield proc
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

    async def probe_primary(self, file: LocalVideoFile) -> float:
        async with self._ffprobe(file.path) as proc:
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._primary_timeout)
            except asyncio.TimeoutError as e:
                raise DurationDetectionFailed("Timeout loading video metadata") from e

        if proc.returncode != 0:
            msg = (stderr or b"").decode("utf-8", errors="replace").strip()[:300]
            raise DurationDetectionFailed(f"Video metadata error: {msg or f'ffprobe exit {proc.returncode}'}")
        try:
            payload = json.loads((stdout or b"{}").decode("utf-8", errors="replace") or "{}")
        except json.JSONDecodeError as e:
            raise DurationDetectionFailed("ffprobe returned unreadable output") from e
        return duration_from_ffprobe_json(payload if isinstance(payload, dict) else {})

    async def probe_fallback(self, file: LocalVideoFile) -> float:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(read_mp4_duration, file.path),
                timeout=self._fallback_timeout,
            )
        except asyncio.TimeoutError as e:
            raise DurationDetectionFailed("Header probe timeout") from e
        except OSError as e:
            raise DurationDetectionFailed(f"Header probe failed: {e}") from e
        except struct.error as e:
            raise DurationDetectionFailed("Corrupt MP4 header") from e
