"""Utility helpers for the ShelfMirror service."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit


def is_remote_url(value: object) -> bool:
    """Return ``True`` when *value* is an absolute http(s) URL."""

    if not isinstance(value, str) or not value.strip():
        return False
    parts = urlsplit(value.strip())
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


def dig(payload: Any, *path: str) -> Any:
    """Follow nested mapping keys, returning ``None`` when a level is missing."""

    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def coerce_rating(value: object, *, upper: float = 10.0) -> float:
    """Return a rating clamped to ``0..upper``; unusable values become 0."""

    if isinstance(value, bool):
        return 0.0
    try:
        rating = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if rating != rating:  # NaN
        return 0.0
    return max(0.0, min(rating, upper))


def format_megabytes(size: int) -> str:
    """Format a byte count as megabytes with two decimals."""

    return f"{size / (1024 * 1024):.2f}"
