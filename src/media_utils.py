"""Helpers for classifying and naming downloaded media."""

from __future__ import annotations

import hashlib
import secrets

from models import MediaType

DEFAULT_EXT = ".dat"
_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def new_id() -> str:
    """Return a random 64 character hex identifier."""
    return secrets.token_hex(32)


def classify_media(media_kind: str | None, mime_type: str | None) -> MediaType | None:
    """Return the queue media type for a message or ``None`` to skip it.

    Photos and videos keep their kind; other documents become ``audio`` when
    their MIME type says so and ``document`` otherwise.
    """
    mime = (mime_type or "").lower()
    if media_kind == "photo":
        return MediaType.PHOTO
    if media_kind == "video":
        return MediaType.VIDEO
    if media_kind == "document":
        if mime.startswith("audio/"):
            return MediaType.AUDIO
        return MediaType.DOCUMENT
    return None


def format_bytes(size: int, decimals: int = 2) -> str:
    """Return ``size`` as a short human readable string like ``1.5 KB``."""
    if size <= 0:
        return "0 Bytes"
    i = 0
    scaled = float(size)
    while scaled >= 1024 and i < len(_SIZE_UNITS) - 1:
        scaled /= 1024
        i += 1
    value = f"{scaled:.{max(decimals, 0)}f}"
    if "." in value:
        value = value.rstrip("0").rstrip(".")
    return f"{value} {_SIZE_UNITS[i]}"


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def stored_name(ext: str | None) -> str:
    """Return a fresh unique file name keeping ``ext``."""
    ext = ext or DEFAULT_EXT
    if not ext.startswith("."):
        ext = "." + ext
    return f"{new_id()}{ext}"
