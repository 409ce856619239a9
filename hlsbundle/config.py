from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

# ------------------------------
# Configuration defaults
# ------------------------------
DEFAULT_HLS_TYPE = "mpegts"
DEFAULT_HLS_INTERVAL = 4
DEFAULT_HLS_SEGMENT_NAME = "{stream}/segment_{index}"
DEFAULT_HLS_ROOT_PLAYLIST = "manifest.m3u8"

DEFAULT_VIDEO_CODEC = "libx264"
DEFAULT_PIXEL_FORMAT = "yuv420p"
DEFAULT_RESOLUTIONS = (2160, 1440, 1080, 720, 480, 360, 240)
DEFAULT_BITRATES = ("18000k", "10000k", "6000k", "3000k", "1500k", "800k", "600k")
DEFAULT_PROFILES = ("high", "high", "high", "high", "high", "main", "main")
DEFAULT_LEVELS = ("5.2", "5.2", "5.1", "4.2", "4.0", "3.1", "3.1")

DEFAULT_AUDIO_CODEC = "aac"
DEFAULT_AUDIO_PROFILE = "aac_low"
DEFAULT_AUDIO_BITRATE = "256k"

DEFAULT_SPRITE_COLUMNS = 6
DEFAULT_TILE_HEIGHT = 144
DEFAULT_PREVIEW_INTERVAL_MIN = 1.0
DEFAULT_PREVIEW_INTERVAL_MAX = 5.0
DEFAULT_PREVIEW_MAX_IMAGES = 180

DEFAULT_IMAGE_FORMAT = "webp"

HLS_TYPES = ("mpegts", "fmp4")
IMAGE_FORMATS = ("webp", "jpeg", "avif")

_BITRATE_RE = re.compile(r"^(?P<num>\d+(?:\.\d+)?)(?P<unit>[kKmM]?)$")


def parse_bitrate(value: object) -> str:
    """Normalise ``3000``, ``"3000k"`` or ``"1.5M"`` to a kbps string like ``"1500k"``."""
    text = str(value).strip()
    m = _BITRATE_RE.match(text)
    if not m:
        raise ValueError(f"Invalid bitrate: {value!r}")
    kbps = float(m.group("num"))
    if m.group("unit") in ("m", "M"):
        kbps *= 1000
    if kbps <= 0:
        raise ValueError(f"Bitrate must be positive: {value!r}")
    return f"{int(round(kbps))}k"


def bitrate_kbps(value: str) -> int:
    return int(parse_bitrate(value)[:-1])


@dataclass(frozen=True)
class HlsOptions:
    type: str = DEFAULT_HLS_TYPE
    interval: float = DEFAULT_HLS_INTERVAL
    segment_name: str = DEFAULT_HLS_SEGMENT_NAME
    root_playlist_name: str = DEFAULT_HLS_ROOT_PLAYLIST

    @property
    def segment_extension(self) -> str:
        return {"mpegts": "ts", "fmp4": "m4s"}[self.type]


@dataclass(frozen=True)
class VideoOptions:
    codec: str = DEFAULT_VIDEO_CODEC
    pixel_format: str = DEFAULT_PIXEL_FORMAT
    resolutions: Tuple[int, ...] = DEFAULT_RESOLUTIONS
    bitrates: Tuple[str, ...] = DEFAULT_BITRATES
    profiles: Tuple[str, ...] = DEFAULT_PROFILES
    levels: Tuple[str, ...] = DEFAULT_LEVELS


@dataclass(frozen=True)
class AudioOptions:
    mute: bool = False
    codec: str = DEFAULT_AUDIO_CODEC
    profile: str = DEFAULT_AUDIO_PROFILE
    bitrate: str = DEFAULT_AUDIO_BITRATE


@dataclass(frozen=True)
class PreviewOptions:
    columns: int = DEFAULT_SPRITE_COLUMNS
    tile_height: int = DEFAULT_TILE_HEIGHT
    interval_min: float = DEFAULT_PREVIEW_INTERVAL_MIN
    interval_max: float = DEFAULT_PREVIEW_INTERVAL_MAX
    max_images: int = DEFAULT_PREVIEW_MAX_IMAGES


@dataclass(frozen=True)
class PackagerConfig:
    """Immutable run configuration, built once from the command line."""

    output: Optional[Path] = None
    output_prefix: str = ""
    image_format: str = DEFAULT_IMAGE_FORMAT
    preserve_dirs_from: Optional[Path] = None
    count_frames: bool = False
    hls_enabled: bool = True
    fallback_enabled: bool = True
    previews_enabled: bool = True
    overwrite: bool = False
    dry_run: bool = False
    ffmpeg_cmd: str = "ffmpeg"
    ffprobe_cmd: str = "ffprobe"
    hls: HlsOptions = field(default_factory=HlsOptions)
    video: VideoOptions = field(default_factory=VideoOptions)
    audio: AudioOptions = field(default_factory=AudioOptions)
    preview: PreviewOptions = field(default_factory=PreviewOptions)

    def __post_init__(self) -> None:
        if self.hls.type not in HLS_TYPES:
            raise ValueError(f"Unknown HLS type: {self.hls.type}")
        if self.image_format not in IMAGE_FORMATS:
            raise ValueError(f"Unknown image format: {self.image_format}")
        if self.hls.interval <= 0:
            raise ValueError("HLS interval must be positive")
        if self.preview.columns < 1 or self.preview.max_images < 1:
            raise ValueError("Preview columns and max images must be at least 1")
        if self.preview.tile_height < 1:
            raise ValueError("Preview tile height must be at least 1 pixel")
        if not 0 < self.preview.interval_min <= self.preview.interval_max:
            raise ValueError("Preview intervals must satisfy 0 < min <= max")
        if not self.video.resolutions:
            raise ValueError("At least one video resolution is required")
        # Variant names derive from the height, so heights must be unique
        duplicates = sorted({h for h in self.video.resolutions if self.video.resolutions.count(h) > 1})
        if duplicates:
            raise ValueError(f"Duplicate video resolutions: {', '.join(f'{h}p' for h in duplicates)}")
        for name in ("bitrates", "profiles", "levels"):
            if not getattr(self.video, name):
                raise ValueError(f"At least one video {name[:-1]} is required")
