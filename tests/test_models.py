from __future__ import annotations

from app.models import ImageRef, Item, Snapshot, SnapshotItems, SubjectDetail

from conftest import make_record


def test_item_from_record_keeps_listed_fields() -> None:
    record = make_record(
        "Spirited Away",
        subject_id=1291561,
        rating=9.4,
        comment="again",
        create_time="2023-05-01 20:00:00",
    )

    item = Item.from_record(record, kind="movie", status="done")

    assert item.name == "Spirited Away"
    assert item.mark_time == "2023-05-01 20:00:00"
    assert item.comment == "again"
    assert item.rating == 9.4
    assert item.subject_id == "1291561"
    assert item.image == ImageRef(source=record["subject"]["pic"]["normal"])
    assert item.status_label == "已观看"


def test_item_from_record_tolerates_missing_fields() -> None:
    item = Item.from_record({"subject": None, "rating": "bad"}, kind="book", status="mark")

    assert item.name == ""
    assert item.mark_time == ""
    assert item.rating == 0.0
    assert item.subject_id is None
    assert item.image.href == ""
    assert item.status_label == "想读"


def test_item_rating_is_clamped() -> None:
    record = make_record("Overrated", rating=12)

    assert Item.from_record(record, kind="movie", status="done").rating == 10.0


def test_item_payload_prefers_cached_image() -> None:
    item = Item(
        name="Dune",
        status="doing",
        kind="book",
        image=ImageRef(source="https://img.example.com/dune.jpg", local="/cache/images/k.jpg"),
    )

    payload = item.to_payload()

    assert payload["image"] == "/cache/images/k.jpg"
    assert payload["originalImage"] == "https://img.example.com/dune.jpg"
    assert payload["cachedImage"] == "/cache/images/k.jpg"
    assert payload["statusLabel"] == "正在阅读"


def test_apply_images_updates_by_source_and_counts_changes() -> None:
    source = "https://img.example.com/a.jpg"
    items = SnapshotItems()
    items.add(Item(name="A", status="done", kind="movie", image=ImageRef(source=source)))
    items.add(Item(name="B", status="done", kind="tv", image=ImageRef(source=source)))
    items.add(Item(name="C", status="done", kind="book", image=ImageRef()))

    changed = items.apply_images({source: ImageRef(source=source, local="/cache/images/a.jpg")})

    assert changed == 2
    assert items.movies[0].image.local == "/cache/images/a.jpg"
    assert items.tv_shows[0].image.local == "/cache/images/a.jpg"
    assert items.apply_images({source: ImageRef(source=source, local="/cache/images/a.jpg")}) == 0


def test_snapshot_round_trips_through_storage_payload() -> None:
    items = SnapshotItems()
    items.add(Item(name="A", status="mark", kind="tv", rating=7.5))
    snapshot = Snapshot.assemble("ahbei", items)

    restored = Snapshot.model_validate(snapshot.to_storage())

    assert restored.model_dump() == snapshot.model_dump()
    assert snapshot.to_storage()["items"]["tvShows"][0]["markTime"] == ""
    assert snapshot.to_payload()["stats"]["byStatus"]["tvShows"]["mark"] == 1


def test_subject_detail_payload() -> None:
    detail = SubjectDetail(
        subject_type="movie",
        subject_id="1",
        name="Alien",
        rating=8.2,
        image=ImageRef(source="https://img.example.com/alien.jpg"),
    )

    payload = detail.to_payload()

    assert payload["type"] == "movie"
    assert payload["image"] == "https://img.example.com/alien.jpg"
    assert payload["cachedImage"] is None
