"""Tests for the two-tier image cache."""

import os
from pathlib import Path

import pytest

from qskipper_server.image_cache import ImageCache


@pytest.fixture()
def cache_dir(tmp_path) -> Path:
    return tmp_path / "images"


def test_key_is_md5_of_identity() -> None:
    key = ImageCache.key_for("https://backend.test/get_product_photo/p1")
    assert len(key) == 32
    assert key == ImageCache.key_for("https://backend.test/get_product_photo/p1")
    assert key != ImageCache.key_for("https://backend.test/get_product_photo/p2")


def test_put_then_get(cache_dir: Path) -> None:
    cache = ImageCache(str(cache_dir))
    stored = cache.put("img-1", b"jpeg-bytes")

    assert cache.get("img-1").data == b"jpeg-bytes"
    assert (cache_dir / stored.key).read_bytes() == b"jpeg-bytes"
    assert cache.get("img-2") is None


def test_disk_hit_survives_new_instance(cache_dir: Path) -> None:
    ImageCache(str(cache_dir)).put("img-1", b"jpeg-bytes")

    fresh = ImageCache(str(cache_dir))
    hit = fresh.get("img-1")

    assert hit is not None
    assert hit.data == b"jpeg-bytes"
    assert hit.key in fresh._memory


def test_last_write_wins(cache_dir: Path) -> None:
    cache = ImageCache(str(cache_dir))
    cache.put("img-1", b"old")
    cache.put("img-1", b"new")
    assert cache.get("img-1").data == b"new"
    assert ImageCache(str(cache_dir)).get("img-1").data == b"new"


def test_memory_tier_is_bounded(cache_dir: Path) -> None:
    cache = ImageCache(str(cache_dir), max_memory_bytes=10)
    first = cache.put("a", b"123456")
    second = cache.put("b", b"abcdef")

    assert first.key not in cache._memory
    assert second.key in cache._memory
    assert cache._memory_bytes == 6
    # still served from disk
    assert cache.get("a").data == b"123456"


def test_disk_tier_evicts_oldest(cache_dir: Path) -> None:
    cache = ImageCache(str(cache_dir), max_disk_bytes=10)
    old = cache.put("a", b"123456")
    os.utime(cache_dir / old.key, (1, 1))

    new = cache.put("b", b"abcdef")

    assert not (cache_dir / old.key).exists()
    assert (cache_dir / new.key).exists()


def test_discard_removes_one_entry(cache_dir: Path) -> None:
    cache = ImageCache(str(cache_dir))
    cache.put("a", b"1")
    cache.put("b", b"2")

    cache.discard("a")
    cache.discard("missing")

    assert cache.get("a") is None
    assert cache.get("b").data == b"2"


def test_clear_is_idempotent(cache_dir: Path) -> None:
    cache = ImageCache(str(cache_dir))
    cache.clear()
    cache.put("a", b"1")

    cache.clear()
    cache.clear()

    assert cache.get("a") is None
    assert list(cache_dir.iterdir()) == []
