"""Build one multi-output ffmpeg invocation for a source file.

Every output (poster frame, progressive fallback, HLS package, preview
frames) is collected as an ``OutputTarget`` with its own option map. The
targets are only flattened into ffmpeg arguments at the very end, through an
ffmpeg-python graph sharing a single input node, so the source is decoded once.
"""
from __future__ import annotations

import logging
import math
import posixpath
import shlex
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import ffmpeg

from .config import PackagerConfig
from .errors import PlanningError
from .previews import PreviewSpriteSpec
from .probe import AudioStream, SourceMediaInfo
from .renditions import RenditionSpec

# Quiet logging plus machine readable progress on stdout
GLOBAL_ARGS = ["-loglevel", "error", "-hide_banner", "-stats_period", "0.25", "-progress", "-"]

POSTER_SEEK_RATIO = 0.05
FALLBACK_MAX_HEIGHT = 720
FALLBACK_VIDEO = {
    "codec:v": "libx264",
    "profile:v": "main",
    "level:v": "3.1",
    "b:v": "2000k",
    "maxrate:v": "2000k",
    "bufsize:v": "3000k",
}
FALLBACK_AUDIO_BITRATE = "96k"
AUDIO_ONLY_VARIANT = "audio"

TARGET_POSTER = "poster"
TARGET_FALLBACK = "fallback"
TARGET_HLS = "hls"
TARGET_PREVIEWS = "previews"


@dataclass(frozen=True)
class OutputTarget:
    """A single ffmpeg output: mapped input streams plus its own options."""

    kind: str
    path: str
    streams: Tuple[int, ...]
    options: Dict[str, Any] = field(default_factory=dict)
    variant_count: int = 0


@dataclass(frozen=True)
class OutputPaths:
    output_dir: Path
    tmp_dir: Path

    @property
    def poster_frame(self) -> Path:
        return self.tmp_dir / "poster.png"

    @property
    def seek_frames(self) -> Path:
        return self.tmp_dir / "seek_%04d.png"

    @property
    def fallback_video(self) -> Path:
        return self.output_dir / "progressive.mp4"

    @property
    def fallback_audio(self) -> Path:
        return self.output_dir / "progressive.mp3"


@dataclass(frozen=True)
class TranscodeJob:
    source: Path
    info: SourceMediaInfo
    targets: Tuple[OutputTarget, ...]
    overwrite: bool = False
    renditions: Tuple[RenditionSpec, ...] = ()
    preview: Optional[PreviewSpriteSpec] = None

    def target(self, kind: str) -> Optional[OutputTarget]:
        return next((t for t in self.targets if t.kind == kind), None)

    def output_stream(self):
        """ffmpeg-python graph of every target fed by one shared input."""
        source = ffmpeg.input(str(self.source))
        outputs = [
            ffmpeg.output(*[source[str(i)] for i in t.streams], t.path, **t.options)
            for t in self.targets
        ]
        return ffmpeg.merge_outputs(*outputs)

    def args(self) -> List[str]:
        flags = GLOBAL_ARGS + ["-y" if self.overwrite else "-n"]
        return flags + ffmpeg.get_args(self.output_stream())

    def command_line(self, cmd: str = "ffmpeg") -> str:
        return " ".join(shlex.quote(a) for a in [cmd] + self.args())


# ------------------------------
# Target builders
# ------------------------------
def _poster_target(info: SourceMediaInfo, paths: OutputPaths) -> OutputTarget:
    return OutputTarget(
        TARGET_POSTER,
        str(paths.poster_frame),
        (info.video.index,),
        {
            "format": "image2",
            "ss": round(info.duration * POSTER_SEEK_RATIO, 3),
            "frames:v": 1,
            "update": 1,
        },
    )


def _aac_profile(config: PackagerConfig, key: str) -> Dict[str, str]:
    # Only the AAC encoder understands these profile names
    if config.audio.codec == "aac":
        return {key: config.audio.profile}
    return {}


def _fallback_target(
    info: SourceMediaInfo, audio: Optional[AudioStream], config: PackagerConfig, paths: OutputPaths
) -> OutputTarget:
    if info.video is None:
        return OutputTarget(
            TARGET_FALLBACK,
            str(paths.fallback_audio),
            (audio.index,),
            {"format": "mp3", "codec:a": "libmp3lame", "b:a": config.audio.bitrate},
        )

    options: Dict[str, Any] = {
        "format": "mp4",
        "vf": f"scale=-2:'min({FALLBACK_MAX_HEIGHT},ih)',format={config.video.pixel_format}",
        "movflags": "+faststart",
    }
    options.update(FALLBACK_VIDEO)
    streams: Tuple[int, ...] = (info.video.index,)
    if audio is not None:
        streams += (audio.index,)
        options.update(_aac_profile(config, "profile:a"))
        options.update({
            "codec:a": config.audio.codec,
            "ar": audio.sample_rate,
            "b:a": FALLBACK_AUDIO_BITRATE,
        })
    else:
        options["an"] = None
    return OutputTarget(TARGET_FALLBACK, str(paths.fallback_video), streams, options)


def hls_output_paths(config: PackagerConfig, output_dir: Path) -> Tuple[str, str]:
    """Return ffmpeg's (segment filename, variant playlist) patterns."""
    name = config.hls.segment_name.replace("{stream}", "%v").replace("{index}", "%04d")
    segment = f"{name}.{config.hls.segment_extension}"
    parent = posixpath.dirname(segment)
    playlist = posixpath.join(parent, "index.m3u8") if "%v" in parent else posixpath.join(parent, "%v.m3u8")
    return str(output_dir / segment), str(output_dir / playlist)


def _hls_target(
    info: SourceMediaInfo,
    audio: Optional[AudioStream],
    renditions: Sequence[RenditionSpec],
    config: PackagerConfig,
    paths: OutputPaths,
) -> OutputTarget:
    segment_path, playlist_path = hls_output_paths(config, paths.output_dir)
    options: Dict[str, Any] = {"format": "hls"}
    streams: List[int] = []
    variants: List[str] = []

    if info.video is not None:
        key_distance = max(1, int(math.floor(info.video.fps * config.hls.interval + 0.5)))
        options.update({"c:v": config.video.codec, "g": key_distance, "keyint_min": key_distance})
    if audio is not None:
        options.update({"c:a": config.audio.codec, "ar": audio.sample_rate})

    options.update({
        "hls_playlist_type": "vod",
        "hls_segment_type": config.hls.type,
        "hls_time": config.hls.interval,
        "hls_list_size": 0,
        "master_pl_name": config.hls.root_playlist_name,
        "hls_segment_filename": segment_path,
    })

    if info.video is not None:
        for i, rendition in enumerate(renditions):
            streams.append(info.video.index)
            options.update({
                f"filter:v:{i}": f"scale=-2:{rendition.height},format={config.video.pixel_format}",
                f"profile:v:{i}": rendition.profile,
                f"level:v:{i}": rendition.level,
                f"b:v:{i}": rendition.bitrate,
                f"maxrate:v:{i}": rendition.bitrate,
                f"bufsize:v:{i}": rendition.bufsize,
            })
            group = [f"v:{i}"]
            if audio is not None:
                streams.append(audio.index)
                options.update(_aac_profile(config, f"profile:a:{i}"))
                options[f"b:a:{i}"] = config.audio.bitrate
                group.append(f"a:{i}")
            group.append(f"name:{rendition.name}")
            variants.append(",".join(group))
    else:
        streams.append(audio.index)
        options.update(_aac_profile(config, "profile:a:0"))
        options["b:a:0"] = config.audio.bitrate
        variants.append(f"a:0,name:{AUDIO_ONLY_VARIANT}")

    options["var_stream_map"] = " ".join(variants)
    return OutputTarget(TARGET_HLS, playlist_path, tuple(streams), options, variant_count=len(variants))


def preview_filter(info: SourceMediaInfo, preview: PreviewSpriteSpec, tile_height: int) -> Tuple[str, bool]:
    """Return the preview filter chain and whether it selects frames by number."""
    scale = f"scale=-2:{tile_height}"
    frames = info.video.frame_count
    if frames:
        step = max(1, -(-frames // preview.frame_count))
        return f"{scale},select='not(mod(n,{step}))'", True
    rate = 1 / Fraction(preview.frame_interval).limit_denominator(1000)
    return f"fps={rate.numerator}/{rate.denominator},{scale}", False


def _previews_target(
    info: SourceMediaInfo, preview: PreviewSpriteSpec, config: PackagerConfig, paths: OutputPaths
) -> OutputTarget:
    chain, selects = preview_filter(info, preview, config.preview.tile_height)
    options: Dict[str, Any] = {
        "format": "image2",
        "c:v": "png",
        "filter:v": chain,
        "frames:v": preview.frame_count,
    }
    if selects:
        options["fps_mode"] = "passthrough"
    return OutputTarget(TARGET_PREVIEWS, str(paths.seek_frames), (info.video.index,), options)


# ------------------------------
# Builder
# ------------------------------
def effective_audio(info: SourceMediaInfo, config: PackagerConfig) -> Optional[AudioStream]:
    """Audio stream to encode, honouring ``mute`` only when there is video."""
    if config.audio.mute and info.video is not None:
        return None
    return info.audio


def build_transcode_job(
    source: Path,
    info: SourceMediaInfo,
    renditions: Sequence[RenditionSpec],
    config: PackagerConfig,
    paths: OutputPaths,
    preview: Optional[PreviewSpriteSpec] = None,
    poster_supplied: bool = False,
) -> TranscodeJob:
    audio = effective_audio(info, config)
    if info.video is None and audio is None:
        raise PlanningError("Nothing to encode: no video and no audio stream")

    targets: List[OutputTarget] = []

    if info.video is not None and not poster_supplied:
        logging.debug("Poster frame requested")
        targets.append(_poster_target(info, paths))

    if config.fallback_enabled:
        logging.debug("Progressive fallback requested")
        targets.append(_fallback_target(info, audio, config, paths))

    if config.hls_enabled:
        if info.video is not None and not renditions:
            raise PlanningError("HLS requested but no rendition fits the source")
        logging.debug("HLS package requested")
        targets.append(_hls_target(info, audio, renditions, config, paths))

    if config.previews_enabled and info.video is not None:
        if preview is None:
            raise PlanningError("Timeline previews requested without a preview plan")
        logging.debug("Seek preview frames requested")
        targets.append(_previews_target(info, preview, config, paths))

    if not targets:
        raise PlanningError("Nothing to encode: every output is disabled")

    return TranscodeJob(
        source=source,
        info=info,
        targets=tuple(targets),
        overwrite=config.overwrite,
        renditions=tuple(renditions),
        preview=preview if config.previews_enabled and info.video is not None else None,
    )
