from __future__ import annotations

import os
import posixpath
import re
from pathlib import Path
from typing import List, Optional

IMAGE_EXTENSIONS = {".png", ".webp", ".jpg", ".jpeg", ".tif", ".tiff"}
TMP_DIR_NAME = "_tmp"
SEEK_DIR_NAME = "seek"
SEEK_FRAME_PREFIX = "seek_"


def slugify(name: str) -> str:
    """Lower-case ``name``, collapse ``-``/``_``/whitespace runs and drop the rest."""
    slug = re.sub(r"[-_\s]+", "-", name.lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


def image_extension(image_format: str) -> str:
    return "jpg" if image_format == "jpeg" else image_format


def relative_source_dir(source: Path, preserve_dirs_from: Optional[Path]) -> str:
    if preserve_dirs_from is None:
        return ""
    rel = os.path.relpath(source.parent, preserve_dirs_from)
    if rel == "." or rel.startswith(".."):
        return ""
    return Path(rel).as_posix()


def resolve_output_dir(
    source: Path,
    output_root: Optional[Path],
    output_prefix: str = "",
    preserve_dirs_from: Optional[Path] = None,
) -> Path:
    """``<root>/<prefix>/<relative dir>/<slug>`` with root defaulting to the source's directory."""
    root = output_root if output_root is not None else source.parent
    parts = [p for p in (output_prefix.strip("/"), relative_source_dir(source, preserve_dirs_from)) if p]
    return root.joinpath(*parts, slugify(source.stem)).resolve()


def public_url(output_prefix: str, source: Path, preserve_dirs_from: Optional[Path], *names: str) -> str:
    """Absolute URL path of a packaged file, as referenced from the cue file."""
    rel = relative_source_dir(source, preserve_dirs_from)
    parts = [p for p in (output_prefix.strip("/"), rel, slugify(source.stem)) + names if p]
    return posixpath.normpath(posixpath.join("/", *parts))


def find_poster(source: Path) -> Optional[Path]:
    """Pick an image beside ``source`` to use as its poster, if any.

    In a directory shared with other media only an image named after the
    source qualifies; otherwise the first image found is used.
    """
    entries = sorted(
        p.name for p in source.parent.iterdir()
        if p.is_file() and p.name != source.name and re.match(r"^[^.\s].+\.\w+$", p.name)
    )
    images = [n for n in entries if Path(n).suffix.lower() in IMAGE_EXTENSIONS]
    others = [n for n in entries if Path(n).suffix.lower() not in IMAGE_EXTENSIONS]

    if others:
        match = next((n for n in images if source.stem in n), None)
        return source.parent / match if match else None
    if images:
        return source.parent / images[0]
    return None


def collect_seek_frames(tmp_dir: Path) -> List[Path]:
    return sorted(p for p in tmp_dir.iterdir() if p.is_file() and p.name.startswith(SEEK_FRAME_PREFIX))
