from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, TypeVar

from .config import bitrate_kbps, parse_bitrate

T = TypeVar("T")


@dataclass(frozen=True)
class RenditionSpec:
    height: int
    bitrate: str
    profile: str
    level: str

    @property
    def bitrate_kbps(self) -> int:
        return bitrate_kbps(self.bitrate)

    @property
    def bufsize(self) -> str:
        """Rate-control buffer, 1.5x the target bitrate."""
        return f"{int(round(self.bitrate_kbps * 1.5))}k"

    @property
    def name(self) -> str:
        return f"{self.height}p"


def pad_to_length(values: Sequence[T], length: int) -> List[T]:
    """Repeat the last element of ``values`` until it has ``length`` items.

    Longer lists are truncated to ``length``.
    """
    if not values:
        raise ValueError("Cannot pad an empty list")
    padded = list(values[:length])
    while len(padded) < length:
        padded.append(values[-1])
    return padded


def plan_renditions(
    source_height: int,
    heights: Sequence[int],
    bitrates: Sequence[object],
    profiles: Sequence[str],
    levels: Sequence[str],
) -> List[RenditionSpec]:
    """Return the configured renditions that do not exceed ``source_height``.

    Configuration order is preserved; nothing is re-sorted.
    """
    count = len(heights)
    candidates = zip(
        heights,
        pad_to_length(bitrates, count),
        pad_to_length(profiles, count),
        pad_to_length(levels, count),
    )
    plan: List[RenditionSpec] = []
    for height, bitrate, profile, level in candidates:
        height = int(height)
        if height > source_height:
            logging.info("Skipping %dp output, source is %dp", height, source_height)
            continue
        plan.append(RenditionSpec(height, parse_bitrate(bitrate), str(profile), str(level)))
    return plan
