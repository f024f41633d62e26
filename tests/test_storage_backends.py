from pathlib import Path

import pytest

from storage.backends import (
    FileStorage,
    MemoryStorage,
    StorageBackend,
    StorageError,
    build_default_storage,
)


def test_memory_storage_copies_documents() -> None:
    storage = MemoryStorage()
    document = {"Room-1": {"label": "Lab"}}
    storage.write("prefs", document)
    document["Room-1"]["label"] = "changed"

    loaded = storage.read("prefs")
    assert loaded == {"Room-1": {"label": "Lab"}}
    loaded["Room-1"]["label"] = "again"
    assert storage.read("prefs") == {"Room-1": {"label": "Lab"}}

    storage.delete("prefs")
    storage.delete("prefs")
    assert storage.read("prefs") is None


def test_file_storage_round_trip(tmp_path: Path) -> None:
    storage = FileStorage(root_path=tmp_path / "nested")
    storage.write("prefs", {"b": 1, "a": 2})

    assert (tmp_path / "nested" / "prefs.json").read_text(encoding="utf-8").startswith("{\n")
    assert FileStorage(root_path=tmp_path / "nested").read("prefs") == {"a": 2, "b": 1}

    storage.delete("prefs")
    assert storage.read("prefs") is None


def test_file_storage_tolerates_missing_empty_and_malformed(tmp_path: Path) -> None:
    storage = FileStorage(root_path=tmp_path)
    assert storage.read("missing") is None

    (tmp_path / "empty.json").write_text("   ", encoding="utf-8")
    assert storage.read("empty") is None

    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert storage.read("broken") is None


def test_file_storage_rejects_path_like_keys(tmp_path: Path) -> None:
    storage = FileStorage(root_path=tmp_path)
    for key in ("", "../escape", "a/b", ".hidden"):
        with pytest.raises(ValueError):
            storage.write(key, {})


def test_file_storage_write_failure_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    storage = FileStorage(root_path=blocker)

    with pytest.raises(StorageError):
        storage.write("prefs", {"a": 1})


def test_backends_satisfy_protocol(tmp_path: Path) -> None:
    assert isinstance(MemoryStorage(), StorageBackend)
    assert isinstance(FileStorage(root_path=tmp_path), StorageBackend)


def test_build_default_storage_selects_backend(tmp_path: Path) -> None:
    build_default_storage.cache_clear()
    try:
        assert isinstance(build_default_storage(backend="memory"), MemoryStorage)
        file_backend = build_default_storage(backend="file", root_path=str(tmp_path))
        assert isinstance(file_backend, FileStorage)
        assert file_backend.root_path == tmp_path
    finally:
        build_default_storage.cache_clear()
