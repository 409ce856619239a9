#!/usr/bin/env python3

import argparse
import logging
import os
import re
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from tqdm import tqdm

from hlsbundle import __version__
from hlsbundle.command import AUDIO_ONLY_VARIANT, OutputPaths, TranscodeJob, build_transcode_job, hls_output_paths
from hlsbundle.compositor import compose_sprite, read_tile_size, render_poster
from hlsbundle.config import (
    DEFAULT_AUDIO_BITRATE,
    DEFAULT_AUDIO_CODEC,
    DEFAULT_AUDIO_PROFILE,
    DEFAULT_BITRATES,
    DEFAULT_HLS_INTERVAL,
    DEFAULT_HLS_ROOT_PLAYLIST,
    DEFAULT_HLS_SEGMENT_NAME,
    DEFAULT_HLS_TYPE,
    DEFAULT_IMAGE_FORMAT,
    DEFAULT_LEVELS,
    DEFAULT_PIXEL_FORMAT,
    DEFAULT_PREVIEW_INTERVAL_MAX,
    DEFAULT_PREVIEW_INTERVAL_MIN,
    DEFAULT_PREVIEW_MAX_IMAGES,
    DEFAULT_PROFILES,
    DEFAULT_RESOLUTIONS,
    DEFAULT_SPRITE_COLUMNS,
    DEFAULT_TILE_HEIGHT,
    DEFAULT_VIDEO_CODEC,
    HLS_TYPES,
    IMAGE_FORMATS,
    AudioOptions,
    HlsOptions,
    PackagerConfig,
    PreviewOptions,
    VideoOptions,
    parse_bitrate,
)
from hlsbundle.driver import ProgressEvent, run_transcode
from hlsbundle.errors import InputError, NoEligibleRenditionError, PackagingError
from hlsbundle.monitoring import metrics
from hlsbundle.paths import (
    SEEK_DIR_NAME,
    TMP_DIR_NAME,
    collect_seek_frames,
    find_poster,
    image_extension,
    public_url,
    resolve_output_dir,
)
from hlsbundle.previews import build_cues, layout_sprite, plan_preview_sprite, render_webvtt
from hlsbundle.probe import inspect_media
from hlsbundle.renditions import plan_renditions

UNHANDLED_EXIT_CODE = 126
USAGE_EXIT_CODE = 2

VIDEO_CODECS = ["libx264", "libx265"]
PIXEL_FORMATS = [
    "yuv420p", "yuvj420p", "yuv422p", "yuvj422p", "yuv444p", "yuvj444p", "nv12", "nv16", "nv21",
    "yuv420p10le", "yuv422p10le", "yuv444p10le", "nv20le", "gray", "gray10le",
]
AUDIO_CODECS = ["aac", "flac", "ac3", "eac3"]
AUDIO_PROFILES = ["aac_low", "mpeg2_aac_low", "aac_ltp", "aac_main"]


# ------------------------------
# Timer decorator
# ------------------------------
def timer(func):
    def wrapper(*args, **kwargs):
        start = time.time()
        result = func(*args, **kwargs)
        end = time.time()
        logging.info(f"{func.__name__} took {end - start:.2f} seconds")
        return result
    return wrapper


@dataclass
class PackageResult:
    source: Path
    output_dir: Optional[Path]
    success: bool
    error_message: Optional[str] = None
    exit_code: int = 0


# ------------------------------
# Logging
# ------------------------------
class TqdmLoggingHandler(logging.StreamHandler):
    """Write records through tqdm so an active progress bar stays intact."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except Exception:
            self.handleError(record)


def configure_logging(verbose: bool = False, silent: bool = False) -> None:
    if silent:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[TqdmLoggingHandler(sys.stdout)],
        force=True,
    )


# ------------------------------
# Per-file packaging
# ------------------------------
def ensure_dir(path: Path) -> None:
    """Ensure directory exists."""
    path.mkdir(parents=True, exist_ok=True)


def _encode(job: TranscodeJob, config: PackagerConfig, silent: bool) -> None:
    bar = tqdm(
        total=100,
        desc=f"Encoding '{job.source.name}'",
        unit="%",
        bar_format="{desc} {percentage:3.0f}%|{bar}| [{elapsed}<{remaining}]",
        disable=silent,
    )

    def on_progress(event: ProgressEvent) -> None:
        bar.n = int(event.percent)
        bar.refresh()
        metrics.set_progress(event.percent)

    start = time.time()
    try:
        run_transcode(job, cmd=config.ffmpeg_cmd, on_progress=on_progress)
    finally:
        bar.close()
        metrics.observe_transcode_time(time.time() - start)
    logging.info("Encoding '%s' [COMPLETE]", job.source.name)


def write_images(
    job: TranscodeJob,
    config: PackagerConfig,
    paths: OutputPaths,
    poster_source: Optional[Path],
) -> None:
    """Encode the poster and assemble the storyboard sprite plus its cue file."""
    ext = image_extension(config.image_format)
    video = job.info.video
    if video is None:
        return

    poster_height = job.renditions[0].height if job.renditions else video.height
    render_poster(
        poster_source or paths.poster_frame,
        paths.output_dir / f"poster.{ext}",
        poster_height,
        config.image_format,
    )

    if job.preview is None:
        return

    frames = collect_seek_frames(paths.tmp_dir)
    if not frames:
        raise PackagingError(f"ffmpeg produced no preview frames in {paths.tmp_dir}")
    tile_width, tile_height = read_tile_size(frames[0])
    layout = layout_sprite(len(frames), config.preview.columns, tile_width, tile_height)

    seek_dir = paths.output_dir / SEEK_DIR_NAME
    ensure_dir(seek_dir)
    sprite_name = f"storyboard.{ext}"
    compose_sprite(frames, layout, seek_dir / sprite_name, config.image_format)

    url = public_url(config.output_prefix, job.source, config.preserve_dirs_from, SEEK_DIR_NAME, sprite_name)
    cues = build_cues(layout.placements, job.preview.frame_interval, url)
    (seek_dir / "thumbnails.vtt").write_text(render_webvtt(cues), encoding="utf-8")
    logging.info("Wrote %s (%d cues)", seek_dir / "thumbnails.vtt", len(cues))


def _log_dry_run(job: TranscodeJob, config: PackagerConfig, paths: OutputPaths) -> None:
    logging.info("[dry-run] output directory: %s", paths.output_dir)
    for target in job.targets:
        logging.info("[dry-run] %s -> %s", target.kind, target.path)
    if job.renditions:
        logging.info("[dry-run] renditions: %s", ", ".join(r.name for r in job.renditions))
    if job.preview is not None:
        logging.info(
            "[dry-run] %d preview frames every %.3fs", job.preview.frame_count, job.preview.frame_interval
        )
    logging.info("[dry-run] $ %s", job.command_line(config.ffmpeg_cmd))


@timer
def package_file(source: Path, config: PackagerConfig, silent: bool = False) -> PackageResult:
    """Inspect, plan, encode and assemble the bundle for one input file."""
    source = source.expanduser().resolve()
    if not source.is_file():
        raise InputError(f"Input file {source} does not exist")

    info = inspect_media(source, ffprobe_cmd=config.ffprobe_cmd, count_frames=config.count_frames)

    output_dir = resolve_output_dir(source, config.output, config.output_prefix, config.preserve_dirs_from)
    if output_dir.exists() and not config.overwrite:
        raise InputError(f"Output path {output_dir} already exists, use --overwrite to force overwrite destination")

    renditions = []
    if info.video is not None:
        v = config.video
        renditions = plan_renditions(info.video.height, v.resolutions, v.bitrates, v.profiles, v.levels)
        if config.hls_enabled and not renditions:
            raise NoEligibleRenditionError(
                f"Source is {info.video.height}p, smaller than every configured resolution "
                f"({', '.join(f'{h}p' for h in v.resolutions)})"
            )

    poster_source = find_poster(source) if info.video is not None else None
    if poster_source is not None:
        logging.info("Using poster frame %s", poster_source)

    preview = None
    if config.previews_enabled:
        if info.video is None:
            logging.warning("Skipping timeline previews, %s has no video", source.name)
        else:
            p = config.preview
            preview = plan_preview_sprite(info.duration, p.interval_min, p.interval_max, p.max_images)

    if config.audio.mute and info.video is None:
        logging.warning("--no-audio ignored, %s has no video", source.name)

    paths = OutputPaths(output_dir, output_dir / TMP_DIR_NAME)
    job = build_transcode_job(
        source, info, renditions, config, paths, preview=preview, poster_supplied=poster_source is not None
    )

    if config.dry_run:
        _log_dry_run(job, config, paths)
        return PackageResult(source, output_dir, True)

    ensure_dir(output_dir)
    ensure_dir(paths.tmp_dir)
    if config.hls_enabled:
        # One directory per var_stream_map name
        for name in [r.name for r in renditions] or [AUDIO_ONLY_VARIANT]:
            for pattern in hls_output_paths(config, output_dir):
                ensure_dir(Path(pattern.replace("%v", name)).parent)
    try:
        _encode(job, config, silent)
        write_images(job, config, paths, poster_source)
    finally:
        shutil.rmtree(paths.tmp_dir, ignore_errors=True)

    return PackageResult(source, output_dir, True)


# ------------------------------
# CLI
# ------------------------------
def parse_resolution_list(res_str: str) -> List[int]:
    """Parse comma-separated resolution list."""
    values: List[int] = []
    for tok in re.split(r"[ ,]+", res_str.strip()):
        if not tok:
            continue
        try:
            value = int(tok.lower().rstrip("p"))
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid resolution: {tok!r}") from None
        if value <= 0:
            raise argparse.ArgumentTypeError(f"resolution must be positive: {tok!r}")
        values.append(value)
    if not values:
        raise argparse.ArgumentTypeError("at least one resolution is required")
    return values


def parse_text_list(text: str) -> List[str]:
    values = [tok for tok in re.split(r"[ ,]+", text.strip()) if tok]
    if not values:
        raise argparse.ArgumentTypeError("at least one value is required")
    return values


def parse_bitrate_list(text: str) -> List[str]:
    try:
        return [parse_bitrate(tok) for tok in parse_text_list(text)]
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mkhls",
        description="Package media files into self-hostable HLS bundles with fallback, poster and seek previews.",
    )
    parser.add_argument("files", nargs="+", type=Path, help="One or more files to process")
    parser.add_argument("-o", "--output", type=Path, default=None,
                        help="Directory to output the packaged files (default: same as input)")
    parser.add_argument("--output-prefix", default="",
                        help="Prefix added to the output path and to URLs in the VTT files")

    hls = parser.add_argument_group("HLS")
    hls.add_argument("--hls-type", choices=HLS_TYPES, default=DEFAULT_HLS_TYPE,
                     help="What type of HLS segments should be encoded")
    hls.add_argument("--hls-interval", type=float, default=DEFAULT_HLS_INTERVAL,
                     help="Length of HLS segments in seconds")
    hls.add_argument("--hls-segment-name", default=DEFAULT_HLS_SEGMENT_NAME,
                     help="Segment name template; placeholders {stream} and {index}")
    hls.add_argument("--hls-root-playlist-name", default=DEFAULT_HLS_ROOT_PLAYLIST,
                     help="Filename of the root playlist")

    video = parser.add_argument_group("video")
    video.add_argument("--video-codec", choices=VIDEO_CODECS, default=DEFAULT_VIDEO_CODEC)
    video.add_argument("--video-pixel-format", choices=PIXEL_FORMATS, default=DEFAULT_PIXEL_FORMAT)
    video.add_argument("--video-resolutions", type=parse_resolution_list, default=list(DEFAULT_RESOLUTIONS),
                       help="Comma-separated output heights, largest first")
    video.add_argument("--video-bitrates", type=parse_bitrate_list, default=list(DEFAULT_BITRATES),
                       help="Comma-separated bitrates (kbps); the last one repeats if fewer than resolutions")
    video.add_argument("--video-profiles", type=parse_text_list, default=list(DEFAULT_PROFILES),
                       help="Comma-separated codec profiles; the last one repeats if fewer than resolutions")
    video.add_argument("--video-levels", type=parse_text_list, default=list(DEFAULT_LEVELS),
                       help="Comma-separated codec levels; the last one repeats if fewer than resolutions")

    audio = parser.add_argument_group("audio")
    audio.add_argument("--audio-codec", choices=AUDIO_CODECS, default=DEFAULT_AUDIO_CODEC)
    audio.add_argument("--audio-profile", choices=AUDIO_PROFILES, default=DEFAULT_AUDIO_PROFILE,
                       help="Profile to use for AAC")
    audio.add_argument("--audio-bitrate", type=parse_bitrate, default=DEFAULT_AUDIO_BITRATE,
                       help="Audio bitrate in kbps")

    previews = parser.add_argument_group("timeline previews")
    previews.add_argument("--timeline-preview-sprite-columns", type=int, default=DEFAULT_SPRITE_COLUMNS,
                          help="Number of images per row in the sprite")
    previews.add_argument("--timeline-preview-tile-height", type=int, default=DEFAULT_TILE_HEIGHT,
                          help="Height of each preview image in pixels")
    previews.add_argument("--timeline-preview-interval-min", type=float, default=DEFAULT_PREVIEW_INTERVAL_MIN,
                          help="Minimum seconds between preview frames before reducing image count")
    previews.add_argument("--timeline-preview-interval-max", type=float, default=DEFAULT_PREVIEW_INTERVAL_MAX,
                          help="Maximum seconds between preview frames before increasing image count")
    previews.add_argument("--timeline-preview-max-images", type=int, default=DEFAULT_PREVIEW_MAX_IMAGES,
                          help="Maximum number of images in the sprite")

    parser.add_argument("--image-format", choices=IMAGE_FORMATS, default=DEFAULT_IMAGE_FORMAT,
                        help="Format of posters and preview sprites")
    parser.add_argument("--preserve-dirs-from", type=Path, default=None,
                        help="Mirror the input's directory, relative to this root, in the output")
    parser.add_argument("--count-frames", action="store_true",
                        help="Force ffprobe to count every frame (might take a long time)")
    parser.add_argument("--no-audio", dest="mute", action="store_true",
                        help="Mute audio in the output (only valid if there's video)")
    parser.add_argument("--no-hls", dest="hls", action="store_false", help="Skip the HLS package")
    parser.add_argument("--no-fallback", dest="fallback", action="store_false",
                        help="Skip the progressive MP4 at 720p or lower")
    parser.add_argument("--no-timeline-previews", dest="timeline_previews", action="store_false",
                        help="Skip timeline previews and the sprite")
    parser.add_argument("--overwrite", action="store_true", help="Overwrite files in the output directory")
    parser.add_argument("-d", "--dry-run", action="store_true", help="Don't write any files")
    parser.add_argument("-s", "--silent", action="store_true", help="Only output errors")
    parser.add_argument("-v", "--verbose", action="store_true", help="Output additional information")
    parser.add_argument("--ffmpeg", default=os.getenv("MKHLS_FFMPEG", "ffmpeg"), help="ffmpeg binary")
    parser.add_argument("--ffprobe", default=os.getenv("MKHLS_FFPROBE", "ffprobe"), help="ffprobe binary")
    parser.add_argument("--metrics-port", type=int, default=_env_int("MKHLS_METRICS_PORT"),
                        help="Expose Prometheus metrics on this port while running")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PackagerConfig:
    return PackagerConfig(
        output=args.output.expanduser().resolve() if args.output else None,
        output_prefix=args.output_prefix,
        image_format=args.image_format,
        preserve_dirs_from=args.preserve_dirs_from.expanduser().resolve() if args.preserve_dirs_from else None,
        count_frames=args.count_frames,
        hls_enabled=args.hls,
        fallback_enabled=args.fallback,
        previews_enabled=args.timeline_previews,
        overwrite=args.overwrite,
        dry_run=args.dry_run,
        ffmpeg_cmd=args.ffmpeg,
        ffprobe_cmd=args.ffprobe,
        hls=HlsOptions(
            type=args.hls_type,
            interval=args.hls_interval,
            segment_name=args.hls_segment_name,
            root_playlist_name=args.hls_root_playlist_name,
        ),
        video=VideoOptions(
            codec=args.video_codec,
            pixel_format=args.video_pixel_format,
            resolutions=tuple(args.video_resolutions),
            bitrates=tuple(args.video_bitrates),
            profiles=tuple(args.video_profiles),
            levels=tuple(args.video_levels),
        ),
        audio=AudioOptions(
            mute=args.mute,
            codec=args.audio_codec,
            profile=args.audio_profile,
            bitrate=args.audio_bitrate,
        ),
        preview=PreviewOptions(
            columns=args.timeline_preview_sprite_columns,
            tile_height=args.timeline_preview_tile_height,
            interval_min=args.timeline_preview_interval_min,
            interval_max=args.timeline_preview_interval_max,
            max_images=args.timeline_preview_max_images,
        ),
    )


def _missing_binaries(config: PackagerConfig) -> List[str]:
    return [b for b in (config.ffmpeg_cmd, config.ffprobe_cmd) if shutil.which(b) is None]


# ------------------------------
# Main
# ------------------------------
@timer
def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(verbose=args.verbose, silent=args.silent)

    try:
        config = build_config(args)
    except ValueError as e:
        logging.error("Invalid configuration: %s", e)
        return USAGE_EXIT_CODE

    missing = _missing_binaries(config)
    if missing:
        for binary in missing:
            logging.error("'%s' not found on PATH. Install ffmpeg first.", binary)
        return USAGE_EXIT_CODE

    if config.overwrite:
        logging.warning("--overwrite specified, files in existing output directories will be replaced")
    if args.metrics_port:
        metrics.start_server(args.metrics_port)
        logging.info("Serving metrics on port %d", args.metrics_port)

    results: List[PackageResult] = []
    total = len(args.files)
    for step, item in enumerate(args.files, start=1):
        logging.info("[%d of %d] Packaging %s...", step, total, item)
        try:
            result = package_file(item, config, silent=args.silent)
        except PackagingError as e:
            logging.error("✗ %s: %s", item, e)
            result = PackageResult(Path(item), None, False, str(e), e.exit_code)
        except Exception as e:
            logging.exception("Unexpected error processing %s: %s", item, e)
            result = PackageResult(Path(item), None, False, str(e), UNHANDLED_EXIT_CODE)
        if result.success:
            logging.info("✓ Packaged %s -> %s", item, result.output_dir)
        metrics.file_done(result.success)
        results.append(result)

    failed = [r for r in results if not r.success]
    logging.info("Processed %d file(s): %d succeeded, %d failed", total, total - len(failed), len(failed))
    for r in failed:
        logging.error("  %s: %s", r.source, r.error_message)
    return failed[0].exit_code if failed else 0


if __name__ == "__main__":
    sys.exit(main())
