from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Sequence, Tuple

from PIL import Image

from .previews import SpriteLayout

SPRITE_BACKGROUND = "#AAAAAA"

_PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "avif": "AVIF"}


def _save_options(image_format: str, quality: int) -> Dict[str, Any]:
    if image_format == "webp":
        return {"quality": quality, "method": 6}
    if image_format == "jpeg":
        return {"quality": quality, "optimize": True, "progressive": True}
    return {"quality": quality}


def _save(image: Image.Image, dest: Path, image_format: str, quality: int) -> None:
    if image_format not in _PIL_FORMATS:
        raise ValueError(f"Unsupported image format: {image_format}")
    image.save(dest, _PIL_FORMATS[image_format], **_save_options(image_format, quality))


def read_tile_size(frame: Path) -> Tuple[int, int]:
    with Image.open(frame) as img:
        return img.size


def render_poster(source: Path, dest: Path, height: int, image_format: str) -> Path:
    """Resize ``source`` to ``height`` (never enlarging it) and encode it."""
    with Image.open(source) as img:
        poster = img.convert("RGB")
    if 0 < height < poster.height:
        width = max(1, round(poster.width * height / poster.height))
        poster = poster.resize((width, height), Image.LANCZOS)
    _save(poster, dest, image_format, 65 if image_format == "jpeg" else 80)
    logging.info("Wrote poster %s (%dx%d)", dest, poster.width, poster.height)
    return dest


def compose_sprite(frames: Sequence[Path], layout: SpriteLayout, dest: Path, image_format: str) -> Path:
    """Paste ``frames`` onto one canvas at the positions given by ``layout``."""
    if len(frames) != len(layout.placements):
        raise ValueError(f"{len(frames)} frames for {len(layout.placements)} tiles")
    canvas = Image.new("RGB", (layout.total_width, layout.total_height), SPRITE_BACKGROUND)
    for frame, tile in zip(frames, layout.placements):
        with Image.open(frame) as img:
            canvas.paste(img.convert("RGB"), (tile.x, tile.y))
    _save(canvas, dest, image_format, 40 if image_format == "jpeg" else 50)
    logging.info(
        "Wrote storyboard %s (%d tiles, %dx%d)", dest, len(frames), layout.total_width, layout.total_height
    )
    return dest
