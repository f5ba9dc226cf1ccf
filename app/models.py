"""Pydantic models describing mirrored collections and snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterator, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field

from .utils import coerce_rating, dig

MediaKind = Literal["movie", "tv", "book"]
UpstreamKind = Literal["movie", "book"]
CollectionStatus = Literal["done", "doing", "mark"]
SubjectType = Literal["movie", "tv", "book", "music"]

UPSTREAM_KINDS: tuple[UpstreamKind, ...] = ("movie", "book")
COLLECTION_STATUSES: tuple[CollectionStatus, ...] = ("done", "doing", "mark")

BUCKET_FOR_KIND: dict[str, str] = {
    "movie": "movies",
    "tv": "tvShows",
    "book": "books",
}

STATUS_LABELS: dict[str, dict[str, str]] = {
    "movie": {"done": "已观看", "doing": "正在观看", "mark": "想看"},
    "tv": {"done": "已观看", "doing": "正在观看", "mark": "想看"},
    "book": {"done": "已阅读", "doing": "正在阅读", "mark": "想读"},
}


class ImageRef(BaseModel):
    """Remote cover URL plus the cache identifier it resolved to, if any.

    ``source`` is the only durable identity of the image and is never
    replaced by a cache attempt. ``local`` is ``None`` whenever the last cache
    attempt failed, in which case callers fall back to ``source``.
    """

    model_config = ConfigDict(frozen=True)

    source: str = ""
    local: str | None = None

    @property
    def href(self) -> str:
        """Return the URL clients should use to display the image."""

        return self.local or self.source

    @property
    def is_cached(self) -> bool:
        return bool(self.local)

    def with_local(self, local: str | None) -> "ImageRef":
        return ImageRef(source=self.source, local=local or None)


class Item(BaseModel):
    """A single mirrored media record."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    mark_time: str = Field(default="", alias="markTime")
    comment: str = ""
    rating: float = Field(default=0.0, ge=0, le=10)
    status: CollectionStatus
    kind: MediaKind
    subject_id: str | None = Field(default=None, alias="subjectId")
    image: ImageRef = Field(default_factory=ImageRef)

    @classmethod
    def from_record(
        cls,
        record: Mapping[str, Any],
        *,
        kind: MediaKind,
        status: CollectionStatus,
    ) -> "Item":
        """Normalise a raw upstream interest record."""

        subject = record.get("subject") if isinstance(record, Mapping) else None
        subject = subject if isinstance(subject, dict) else {}
        subject_id = subject.get("id")
        image_url = dig(subject, "pic", "normal")
        return cls(
            name=str(subject.get("title") or ""),
            mark_time=str(record.get("create_time") or ""),
            comment=str(record.get("comment") or ""),
            rating=coerce_rating(dig(dict(record), "rating", "value")),
            status=status,
            kind=kind,
            subject_id=str(subject_id) if subject_id not in (None, "") else None,
            image=ImageRef(source=str(image_url or "").strip()),
        )

    @property
    def status_label(self) -> str:
        return STATUS_LABELS[self.kind][self.status]

    def to_payload(self) -> dict[str, object]:
        """Return the API representation with flattened image fields."""

        return {
            "name": self.name,
            "markTime": self.mark_time,
            "comment": self.comment,
            "rating": self.rating,
            "status": self.status,
            "statusLabel": self.status_label,
            "kind": self.kind,
            "subjectId": self.subject_id,
            "image": self.image.href,
            "originalImage": self.image.source or None,
            "cachedImage": self.image.local,
        }


class SnapshotItems(BaseModel):
    """The three fixed item buckets of a snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    movies: list[Item] = Field(default_factory=list)
    tv_shows: list[Item] = Field(default_factory=list, alias="tvShows")
    books: list[Item] = Field(default_factory=list)

    def bucket(self, name: str) -> list[Item]:
        """Return the bucket named ``movies``, ``tvShows`` or ``books``."""

        if name == "movies":
            return self.movies
        if name == "tvShows":
            return self.tv_shows
        if name == "books":
            return self.books
        raise KeyError(name)

    def add(self, item: Item) -> None:
        self.bucket(BUCKET_FOR_KIND[item.kind]).append(item)

    def iter_items(self) -> Iterator[Item]:
        """Visit every item in bucket order."""

        yield from self.movies
        yield from self.tv_shows
        yield from self.books

    def image_refs(self) -> list[ImageRef]:
        return [item.image for item in self.iter_items()]

    def apply_images(self, resolved: Mapping[str, ImageRef]) -> int:
        """Swap in resolved image references and return how many changed.

        Lookups use the item's source URL, falling back to its local
        identifier for records that never had a source.
        """

        changed = 0
        for item in self.iter_items():
            lookup = item.image.source or item.image.local
            if not lookup:
                continue
            replacement = resolved.get(lookup)
            if replacement is None or replacement == item.image:
                continue
            item.image = ImageRef(
                source=item.image.source, local=replacement.local
            )
            changed += 1
        return changed


class SnapshotStats(BaseModel):
    """Counts per bucket, in total and per collection status."""

    model_config = ConfigDict(populate_by_name=True)

    movies: int = 0
    tv_shows: int = Field(default=0, alias="tvShows")
    books: int = 0
    by_status: dict[str, dict[str, int]] = Field(
        default_factory=dict, alias="byStatus"
    )

    @classmethod
    def from_items(cls, items: SnapshotItems) -> "SnapshotStats":
        by_status: dict[str, dict[str, int]] = {}
        for bucket in ("movies", "tvShows", "books"):
            counts = {status: 0 for status in COLLECTION_STATUSES}
            for item in items.bucket(bucket):
                counts[item.status] += 1
            by_status[bucket] = counts
        return cls(
            movies=len(items.movies),
            tv_shows=len(items.tv_shows),
            books=len(items.books),
            by_status=by_status,
        )


class Snapshot(BaseModel):
    """Canonical, persisted aggregate of one user's mirrored records."""

    model_config = ConfigDict(populate_by_name=True)

    uid: str
    stats: SnapshotStats = Field(default_factory=SnapshotStats)
    items: SnapshotItems = Field(default_factory=SnapshotItems)
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="generatedAt"
    )

    @classmethod
    def assemble(cls, uid: str, items: SnapshotItems) -> "Snapshot":
        return cls(uid=uid, stats=SnapshotStats.from_items(items), items=items)

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_payload(self) -> dict[str, object]:
        """Return the API representation of the snapshot."""

        return {
            "uid": self.uid,
            "generatedAt": self.generated_at.isoformat(),
            "stats": self.stats.model_dump(by_alias=True),
            "data": {
                bucket: [item.to_payload() for item in self.items.bucket(bucket)]
                for bucket in ("movies", "tvShows", "books")
            },
        }


class SubjectDetail(BaseModel):
    """Name, cover and rating of a single upstream subject."""

    model_config = ConfigDict(populate_by_name=True)

    subject_type: SubjectType = Field(alias="type")
    subject_id: str = Field(alias="id")
    name: str = ""
    rating: float = 0.0
    image: ImageRef = Field(default_factory=ImageRef)

    def to_payload(self) -> dict[str, object]:
        return {
            "type": self.subject_type,
            "id": self.subject_id,
            "name": self.name,
            "rating": self.rating,
            "image": self.image.href,
            "originalImage": self.image.source or None,
            "cachedImage": self.image.local,
        }
