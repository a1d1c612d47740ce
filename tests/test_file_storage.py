"""Tests for the local blob store."""
import pytest

from lokaldrive.errors import BlobNotFoundError, BlobStoreError, InvalidStorageKeyError
from lokaldrive.services import file_storage
from lokaldrive.services.file_storage import generate_storage_key


async def test_put_stores_content_under_new_key(storage):
    key = await storage.put(b"hello", "greeting.txt")

    assert key.endswith("-greeting.txt")
    assert (storage.base_path / key).read_bytes() == b"hello"
    assert await storage.size_of(key) == 5
    assert await storage.read(key) == b"hello"


async def test_put_same_name_twice_gets_distinct_keys(storage):
    first = await storage.put(b"one", "same.txt")
    second = await storage.put(b"two", "same.txt")

    assert first != second
    assert await storage.read(first) == b"one"
    assert await storage.read(second) == b"two"


async def test_put_never_overwrites_existing_key(storage, monkeypatch):
    keys = iter(["1-1-a.txt", "1-1-a.txt", "2-2-a.txt"])
    monkeypatch.setattr(file_storage, "generate_storage_key", lambda name: next(keys))

    first = await storage.put(b"original", "a.txt")
    second = await storage.put(b"newer", "a.txt")

    assert first == "1-1-a.txt"
    assert second == "2-2-a.txt"
    assert await storage.read(first) == b"original"


async def test_put_gives_up_after_repeated_collisions(storage, monkeypatch):
    monkeypatch.setattr(file_storage, "generate_storage_key", lambda name: "fixed-key")
    await storage.put(b"x", "a.txt")

    with pytest.raises(BlobStoreError, match="unique storage key"):
        await storage.put(b"y", "a.txt")
    assert await storage.read("fixed-key") == b"x"


async def test_remove_deletes_blob(storage):
    key = await storage.put(b"bye", "bye.txt")

    await storage.remove(key)

    assert key not in await storage.list_keys()
    with pytest.raises(BlobNotFoundError):
        await storage.read(key)


async def test_remove_missing_blob_raises_not_found(storage):
    with pytest.raises(BlobNotFoundError) as exc_info:
        await storage.remove("123-456-missing.txt")
    assert exc_info.value.storage_key == "123-456-missing.txt"


async def test_rollback_put_tolerates_missing_blob(storage):
    # Must not raise
    await storage.rollback_put("123-456-missing.txt")


async def test_size_of_missing_blob(storage):
    with pytest.raises(BlobNotFoundError):
        await storage.size_of("nope")


@pytest.mark.parametrize("key", ["", ".", "..", "../escape.txt", "nested/key.txt", "back\\slash"])
async def test_invalid_keys_rejected(storage, key):
    with pytest.raises(InvalidStorageKeyError):
        await storage.remove(key)


async def test_open_reads_blob(storage):
    key = await storage.put(b"abc", "report.pdf")

    blob = await storage.open(key)
    try:
        assert await blob.read() == b"abc"
    finally:
        await blob.close()


async def test_open_handle_survives_removal(storage):
    key = await storage.put(b"still here", "report.pdf")

    blob = await storage.open(key)
    try:
        await storage.remove(key)
        assert await blob.read() == b"still here"
    finally:
        await blob.close()


async def test_open_missing_blob(storage):
    with pytest.raises(BlobNotFoundError):
        await storage.open("1-2-gone.pdf")


async def test_list_keys(storage):
    a = await storage.put(b"a", "a.txt")
    b = await storage.put(b"b", "b.txt")

    assert await storage.list_keys() == sorted([a, b])


def test_generate_storage_key_keeps_readable_hint():
    key = generate_storage_key("my report (1).pdf")

    timestamp, random_part, hint = key.split("-", 2)
    assert timestamp.isdigit()
    assert random_part.isdigit()
    assert hint == "my_report_1_.pdf"


def test_generate_storage_key_strips_path_components():
    key = generate_storage_key("../../etc/passwd")

    assert "/" not in key
    assert key.endswith("-etc_passwd")


def test_generate_storage_key_for_unusable_name():
    assert generate_storage_key("...").endswith("-blob")
