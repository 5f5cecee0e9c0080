from __future__ import annotations

import json
from pathlib import Path

from athena.core.store import JsonFileStore, MemoryStore


def test_memory_store_returns_default_for_missing_and_corrupt() -> None:
    store = MemoryStore()
    assert store.load("missing", []) == []
    store.put_raw("broken", "{not json")
    assert store.load("broken", {"fallback": True}) == {"fallback": True}


def test_memory_store_save_and_delete() -> None:
    store = MemoryStore({"a": [1, 2]})
    assert store.load("a", None) == [1, 2]
    store.delete("a")
    assert store.load("a", None) is None
    assert store.backend_type == "memory"


def test_json_file_store_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "store.json"
    store = JsonFileStore(path)
    store.save("chats", [{"id": "c1"}])
    store.save("active", "c1")

    reopened = JsonFileStore(path)
    assert reopened.load("chats", []) == [{"id": "c1"}]
    assert reopened.load("active", None) == "c1"
    assert not path.with_suffix(".json.tmp").exists()


def test_json_file_store_loaded_values_are_copies(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "store.json")
    store.save("chats", [{"id": "c1"}])
    loaded = store.load("chats", [])
    loaded.append({"id": "c2"})
    assert store.load("chats", []) == [{"id": "c1"}]


def test_json_file_store_fails_soft_on_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{oops", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.load("chats", []) == []
    store.save("active", "c9")
    assert json.loads(path.read_text(encoding="utf-8")) == {"active": "c9"}


def test_json_file_store_ignores_non_object_document(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert JsonFileStore(path).load("chats", "default") == "default"


def test_json_file_store_accepts_bom(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("\ufeff" + json.dumps({"voice": "male"}), encoding="utf-8")
    assert JsonFileStore(path).load("voice", None) == "male"


def test_json_file_store_delete_removes_null_value(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = JsonFileStore(path)
    store.save("active", None)
    store.delete("active")
    assert "active" not in json.loads(path.read_text(encoding="utf-8"))
    assert JsonFileStore(path).load("active", "missing") == "missing"
