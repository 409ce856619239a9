from __future__ import annotations

from typing import Optional


class PackagingError(Exception):
    """Base class for failures that abort packaging of a single input."""

    exit_code = 1

    def __init__(self, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InputError(PackagingError):
    """Unreadable source, no usable streams, or an occupied destination."""


class ProbeError(InputError):
    """ffprobe failed or returned data missing required fields."""


class PlanningError(PackagingError):
    pass


class NoEligibleRenditionError(PlanningError):
    """Every configured rendition is taller than the source."""


class TranscodeError(PackagingError):
    """ffmpeg exited non-zero or reported a fatal condition."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message, exit_code)
        self.stderr = stderr
