"""HLS bundle helpers: probing, rendition and preview planning, ffmpeg command building and running."""

__version__ = "2.6.1"

__all__ = [
    "command",
    "compositor",
    "config",
    "driver",
    "errors",
    "monitoring",
    "paths",
    "previews",
    "probe",
    "renditions",
    "timecode",
]
