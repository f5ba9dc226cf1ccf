"""Movie versus TV classification for records fetched under ``movie``.

The upstream API files TV programmes under the movie collection, so the only
signal available is free text on the subject. The policy lives here so it can
be tested and swapped without touching the reconciliation loop.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping

from .models import MediaKind, UpstreamKind

RecordPredicate = Callable[[Mapping[str, Any]], bool]


def subject_tv_predicate(markers: Iterable[str]) -> RecordPredicate:
    """Build a predicate matching records whose subject looks like a TV show.

    A record matches when any marker is a substring of the subject's
    ``card_subtitle`` or an exact entry of its ``genres`` list.
    """

    cleaned = tuple(marker for marker in markers if marker)

    def is_tv(record: Mapping[str, Any]) -> bool:
        subject = record.get("subject")
        if not isinstance(subject, dict) or not cleaned:
            return False
        subtitle = subject.get("card_subtitle")
        if isinstance(subtitle, str) and any(marker in subtitle for marker in cleaned):
            return True
        genres = subject.get("genres")
        if isinstance(genres, list):
            return any(marker in genres for marker in cleaned)
        return False

    return is_tv


def classify_kind(
    upstream_kind: UpstreamKind,
    record: Mapping[str, Any],
    is_tv: RecordPredicate,
) -> MediaKind:
    """Return the media kind for a record fetched under ``upstream_kind``."""

    if upstream_kind == "movie" and is_tv(record):
        return "tv"
    return upstream_kind
