from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

DurationSource = Literal["service-reported", "local-probe", "default-fallback"]

DEFAULT_DURATION_SECONDS = 60


def round_seconds(value: float) -> int:
    # Half-up, so 125.5 -> 126 (Python's round() would give banker's rounding).
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class DurationEstimate:
    seconds: int
    source: DurationSource

    def display(self) -> str:
        if self.seconds < 60:
            return f"{self.seconds} sec"
        return f"{self.seconds // 60}:{self.seconds % 60:02d}"


def _usable(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def resolve_duration(
    *,
    service_seconds: float | None,
    local_seconds: float | None,
    default_seconds: int = DEFAULT_DURATION_SECONDS,
) -> DurationEstimate:
    """The service's figure wins once available, then the local probe, then the default."""
    if _usable(service_seconds):
        return DurationEstimate(seconds=round_seconds(float(service_seconds)), source="service-reported")
    if _usable(local_seconds):
        return DurationEstimate(seconds=round_seconds(float(local_seconds)), source="local-probe")
    return DurationEstimate(seconds=int(default_seconds), source="default-fallback")
