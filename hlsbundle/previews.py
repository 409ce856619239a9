"""Timeline preview planning: sampling density, sprite geometry and WebVTT cues."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence

from .timecode import to_timestamp

# Frame count used for media between ``min * 60`` and ``max * 60`` seconds long
MID_TIER_FRAMES = 60


@dataclass(frozen=True)
class PreviewSpriteSpec:
    frame_interval: float
    frame_count: int


@dataclass(frozen=True)
class TilePlacement:
    index: int
    column: int
    row: int
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class SpriteLayout:
    columns: int
    rows: int
    tile_width: int
    tile_height: int
    placements: List[TilePlacement]

    @property
    def total_width(self) -> int:
        return self.tile_width * self.columns

    @property
    def total_height(self) -> int:
        return self.tile_height * self.rows


@dataclass(frozen=True)
class CueEntry:
    start: float
    end: float
    image: str
    x: int
    y: int
    width: int
    height: int

    def render(self) -> str:
        return (
            f"{to_timestamp(self.start)} --> {to_timestamp(self.end)}\n"
            f"{self.image}#xywh={self.x},{self.y},{self.width},{self.height}"
        )


def plan_preview_sprite(
    duration: float,
    min_interval: float,
    max_interval: float,
    max_images: int,
) -> PreviewSpriteSpec:
    """Pick how many preview frames to sample and how far apart.

    Short media is sampled every ``min_interval`` seconds, medium media gets
    a fixed 60 frames, longer media is sampled every ``max_interval`` seconds
    and very long media is capped at ``max_images`` with a coarser interval.
    Counts are rounded so the interval stays inside ``[min, max]`` wherever
    the tier allows it.
    """
    if duration <= 0:
        raise ValueError(f"Duration must be positive, got {duration}")

    frame_count = max_images
    if duration <= min_interval * 60:
        frame_count = math.floor(duration / min_interval)
    elif duration <= max_interval * 60:
        frame_count = MID_TIER_FRAMES
    elif duration <= max_interval * max_images:
        frame_count = math.ceil(duration / max_interval)

    frame_count = max(1, min(int(frame_count), max_images))
    return PreviewSpriteSpec(frame_interval=duration / frame_count, frame_count=frame_count)


def layout_sprite(frame_count: int, columns: int, tile_width: int, tile_height: int) -> SpriteLayout:
    """Place ``frame_count`` tiles on a grid, row by row."""
    if frame_count < 1:
        raise ValueError("Sprite needs at least one frame")
    if columns < 1:
        raise ValueError("Sprite needs at least one column")
    rows = math.ceil(frame_count / columns)
    placements = []
    for i in range(frame_count):
        col, row = i % columns, i // columns
        placements.append(
            TilePlacement(i, col, row, col * tile_width, row * tile_height, tile_width, tile_height)
        )
    return SpriteLayout(columns, rows, tile_width, tile_height, placements)


def build_cues(placements: Sequence[TilePlacement], interval: float, image_url: str) -> List[CueEntry]:
    cues = []
    for tile in placements:
        start = tile.index * interval
        end = (tile.index + 1) * interval
        cues.append(CueEntry(start, end, image_url, tile.x, tile.y, tile.width, tile.height))
    return cues


def render_webvtt(cues: Sequence[CueEntry]) -> str:
    return "\n\n".join(["WEBVTT"] + [cue.render() for cue in cues]) + "\n"
