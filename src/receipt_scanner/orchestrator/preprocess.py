"""Normalize uploaded images into a format browsers and models can display."""

from __future__ import annotations

import io
import os

from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from ..domain.models import SourceFile
from ..logging import get_logger


LOG = get_logger("orchestrator-preprocess")

register_heif_opener()

HEIF_MEDIA_TYPES = {"image/heic", "image/heif"}
HEIF_SUFFIXES = (".heic", ".heif")
JPEG_QUALITY = 85


def is_heif(source: SourceFile) -> bool:
    return (source.media_type or "").lower() in HEIF_MEDIA_TYPES or source.filename.lower().endswith(HEIF_SUFFIXES)


def _jpeg_name(filename: str) -> str:
    stem, ext = os.path.splitext(filename)
    if ext.lower() in HEIF_SUFFIXES:
        return f"{stem}.jpg"
    return filename + ".jpg"


def normalize_for_display(source: SourceFile) -> SourceFile:
    """Return a JPEG copy of HEIC/HEIF uploads; everything else unchanged.

    Never raises: if conversion fails the original file is returned and the
    preview may simply not render.
    """
    if not is_heif(source):
        return source

    LOG.info(f"Converting HEIC file: {source.filename}")
    try:
        with Image.open(io.BytesIO(source.content)) as img:
            rgb = img.convert("RGB")
            buf = io.BytesIO()
            rgb.save(buf, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        LOG.error(f"HEIC conversion failed for {source.filename}: {exc}")
        return source

    converted = SourceFile(filename=_jpeg_name(source.filename), content=buf.getvalue(), media_type="image/jpeg")
    LOG.info(f"Conversion successful: {converted.filename} ({converted.byte_size} bytes)")
    return converted
