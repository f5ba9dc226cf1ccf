from __future__ import annotations

import os
import time
from datetime import timedelta

import pytest

from app.blob_store import FileBlobStore


def test_put_get_and_delete_round_trip(tmp_path) -> None:
    store = FileBlobStore(tmp_path / "blobs")

    assert store.put("abc.jpg", b"payload") == 7
    assert store.get("abc.jpg") == b"payload"
    assert store.exists("abc.jpg")
    assert store.size_of("abc.jpg") == 7

    assert store.delete("abc.jpg") is True
    assert store.delete("abc.jpg") is False
    assert store.get("abc.jpg") is None
    assert store.size_of("abc.jpg") is None


def test_put_leaves_no_temporary_files(tmp_path) -> None:
    store = FileBlobStore(tmp_path)
    store.put("one.jpg", b"1")
    store.put("one.jpg", b"22")

    assert [path.name for path in tmp_path.iterdir()] == ["one.jpg"]
    assert store.get("one.jpg") == b"22"


@pytest.mark.parametrize("key", ["", ".hidden", "../escape.jpg", "nested/key.jpg", "a\\b", ".."])
def test_invalid_keys_are_rejected(tmp_path, key: str) -> None:
    store = FileBlobStore(tmp_path)

    with pytest.raises(ValueError):
        store.put(key, b"data")


def test_list_keys_skips_hidden_files(tmp_path) -> None:
    store = FileBlobStore(tmp_path)
    store.put("b.png", b"b")
    store.put("a.jpg", b"a")
    (tmp_path / ".a.jpg.tmp.123").write_bytes(b"partial")

    assert store.list_keys() == ["a.jpg", "b.png"]
    assert [entry.key for entry in store.entries()] == ["a.jpg", "b.png"]


def test_entries_flag_empty_blobs_as_invalid(tmp_path) -> None:
    store = FileBlobStore(tmp_path)
    store.put("full.jpg", b"data")
    (tmp_path / "empty.jpg").write_bytes(b"")

    validity = {entry.key: entry.is_valid for entry in store.entries()}

    assert validity == {"empty.jpg": False, "full.jpg": True}


def test_purge_removes_named_keys_only(tmp_path) -> None:
    store = FileBlobStore(tmp_path)
    for key in ("a.jpg", "b.jpg", "c.jpg"):
        store.put(key, b"x")

    removed = store.purge(["a.jpg", "missing.jpg", "../c.jpg", "b.jpg"])

    assert removed == ["a.jpg", "b.jpg"]
    assert store.list_keys() == ["c.jpg"]


def test_purge_older_than_uses_modification_time(tmp_path) -> None:
    store = FileBlobStore(tmp_path)
    store.put("old.jpg", b"old")
    store.put("new.jpg", b"new")
    ten_days_ago = time.time() - 10 * 86400
    os.utime(tmp_path / "old.jpg", (ten_days_ago, ten_days_ago))

    removed = store.purge_older_than(timedelta(days=7))

    assert removed == ["old.jpg"]
    assert store.list_keys() == ["new.jpg"]
