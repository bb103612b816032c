import os
import sys

import pytest

from dashboard_api import Credentials, FileStorage, MemoryStorage, TokenStorage


def test_memory_storage_set_get() -> None:
    store = MemoryStorage()
    creds = Credentials("access", "refresh", 1234.0)

    store.set(creds)

    assert store.get() == creds


def test_memory_storage_clear() -> None:
    store = MemoryStorage(Credentials("access", "refresh"))

    store.clear()

    assert store.get() is None


def test_storages_satisfy_protocol(tmp_path) -> None:
    assert isinstance(MemoryStorage(), TokenStorage)
    assert isinstance(FileStorage(tmp_path / "tokens.json"), TokenStorage)


def test_file_storage_survives_new_instance(tmp_path) -> None:
    path = tmp_path / "nested" / "tokens.json"
    FileStorage(path).set(Credentials("access", "refresh", 99.5))

    restored = FileStorage(path).get()

    assert restored == Credentials("access", "refresh", 99.5)


def test_file_storage_readers_see_latest_write(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    writer = FileStorage(path)
    reader = FileStorage(path)

    writer.set(Credentials("a1", "r1"))
    assert reader.get().access_token == "a1"

    writer.set(Credentials("a2", "r2"))
    assert reader.get().access_token == "a2"


def test_file_storage_clear_removes_file(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    store = FileStorage(path)
    store.set(Credentials("access", "refresh"))

    store.clear()
    store.clear()

    assert not path.exists()
    assert store.get() is None


def test_file_storage_missing_file(tmp_path) -> None:
    assert FileStorage(tmp_path / "absent.json").get() is None


def test_file_storage_corrupt_file_reads_as_logged_out(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("{not json", encoding="utf-8")

    assert FileStorage(path).get() is None


def test_file_storage_non_object_reads_as_logged_out(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("[1, 2]", encoding="utf-8")

    assert FileStorage(path).get() is None


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_file_storage_is_owner_only(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    FileStorage(path).set(Credentials("access", "refresh"))

    assert os.stat(path).st_mode & 0o777 == 0o600
    assert list(tmp_path.iterdir()) == [path]
