from __future__ import annotations

import logging
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, Optional

import ffmpeg

from .errors import InputError, ProbeError


@dataclass(frozen=True)
class VideoStream:
    index: int
    width: int
    height: int
    frame_rate: Fraction
    frame_count: Optional[int] = None

    @property
    def fps(self) -> float:
        return float(self.frame_rate)


@dataclass(frozen=True)
class AudioStream:
    index: int
    channels: int
    sample_rate: int


@dataclass(frozen=True)
class SourceMediaInfo:
    duration: float
    video: Optional[VideoStream] = None
    audio: Optional[AudioStream] = None


# ------------------------------
# Field coercion
# ------------------------------
def _require(stream: Dict[str, Any], key: str, kind: str) -> Any:
    value = stream.get(key)
    if value in (None, "", "N/A"):
        raise ProbeError(f"{kind} stream {stream.get('index')} is missing '{key}'")
    return value


def _as_int(value: Any, what: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ProbeError(f"Invalid {what}: {value!r}") from None


def _optional_int(value: Any) -> Optional[int]:
    try:
        result = int(value)
    except (TypeError, ValueError):
        return None
    return result if result > 0 else None


def _parse_frame_rate(stream: Dict[str, Any]) -> Fraction:
    for key in ("r_frame_rate", "avg_frame_rate"):
        raw = stream.get(key)
        if not raw or raw == "N/A":
            continue
        try:
            rate = Fraction(str(raw))
        except (ValueError, ZeroDivisionError):
            continue
        if rate > 0:
            return rate
    raise ProbeError(f"video stream {stream.get('index')} has no usable frame rate")


def _parse_duration(value: Any) -> Optional[float]:
    try:
        duration = float(value)
    except (TypeError, ValueError):
        return None
    return duration if duration > 0 else None


def _is_attached_picture(stream: Dict[str, Any]) -> bool:
    disposition = stream.get("disposition")
    if not isinstance(disposition, dict):
        return False
    return str(disposition.get("attached_pic", 0)) == "1"


# ------------------------------
# Parsing
# ------------------------------
def parse_probe(data: Dict[str, Any]) -> SourceMediaInfo:
    """Turn ffprobe's ``-show_format -show_streams`` JSON into ``SourceMediaInfo``."""
    streams = data.get("streams") or []
    raw_video = next(
        (s for s in streams if s.get("codec_type") == "video" and not _is_attached_picture(s)),
        None,
    )
    raw_audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    if raw_video is None and raw_audio is None:
        raise InputError("No video or audio stream found")

    video: Optional[VideoStream] = None
    if raw_video is not None:
        frame_count = _optional_int(raw_video.get("nb_read_frames")) or _optional_int(raw_video.get("nb_frames"))
        video = VideoStream(
            index=_as_int(_require(raw_video, "index", "video"), "stream index"),
            width=_as_int(_require(raw_video, "width", "video"), "width"),
            height=_as_int(_require(raw_video, "height", "video"), "height"),
            frame_rate=_parse_frame_rate(raw_video),
            frame_count=frame_count,
        )

    audio: Optional[AudioStream] = None
    if raw_audio is not None:
        audio = AudioStream(
            index=_as_int(_require(raw_audio, "index", "audio"), "stream index"),
            channels=_as_int(_require(raw_audio, "channels", "audio"), "channel count"),
            sample_rate=_as_int(_require(raw_audio, "sample_rate", "audio"), "sample rate"),
        )

    duration = _parse_duration((data.get("format") or {}).get("duration"))
    if duration is None:
        selected = raw_video if raw_video is not None else raw_audio
        duration = _parse_duration(selected.get("duration"))
    if duration is None:
        raise ProbeError("Media duration is unknown")

    return SourceMediaInfo(duration=duration, video=video, audio=audio)


def inspect_media(input_path: Path, ffprobe_cmd: str = "ffprobe", count_frames: bool = False) -> SourceMediaInfo:
    """Probe ``input_path`` and select its first video and audio streams."""
    extra: Dict[str, Any] = {"count_frames": None} if count_frames else {}
    try:
        data = ffmpeg.probe(str(input_path), cmd=ffprobe_cmd, **extra)
    except ffmpeg.Error as e:
        message = e.stderr.decode(errors="replace").strip() if e.stderr else str(e)
        raise ProbeError(f"ffprobe failed for {input_path}: {message}") from e

    info = parse_probe(data)
    logging.info("Total media duration: ~%.3fs", info.duration)
    if info.video:
        logging.info(
            "Selected video stream at index %d: %dx%d @ %.3gfps",
            info.video.index, info.video.width, info.video.height, info.video.fps,
        )
    else:
        logging.warning("No video tracks available in %s", input_path)
    if info.audio:
        logging.info(
            "Selected audio stream at index %d: %dch @ %dHz",
            info.audio.index, info.audio.channels, info.audio.sample_rate,
        )
    else:
        logging.warning("No audio tracks available in %s", input_path)
    return info
