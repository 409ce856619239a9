from __future__ import annotations

from typing import Union


def to_timestamp(seconds: Union[int, float, str]) -> str:
    """Format seconds as ``H:MM:SS.mmm`` (hours are not padded)."""
    value = float(seconds)
    if value < 0:
        raise ValueError(f"Negative time: {seconds!r}")
    total_ms = int(round(value * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours}:{minutes:02d}:{secs:02d}.{millis:03d}"


def to_seconds(timestamp: Union[int, float, str]) -> float:
    """Parse ``[-][[H:]M:]S[.fff]`` or a plain number into seconds."""
    if isinstance(timestamp, (int, float)):
        return float(timestamp)
    text = timestamp.strip()
    if not text:
        raise ValueError("Empty timestamp")
    sign = 1.0
    if text.startswith("-"):
        sign = -1.0
        text = text[1:]
    parts = text.split(":")
    if len(parts) > 3:
        raise ValueError(f"Invalid timestamp: {timestamp!r}")
    total = 0.0
    for part in parts:
        total = total * 60 + float(part)
    return sign * total
