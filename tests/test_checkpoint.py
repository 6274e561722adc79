import json
import os

from site_auditor import checkpoint
from site_auditor.checkpoint import StateStore, write_json_atomic
from site_auditor.state import CrawlState

START = "https://example.com/"


def test_missing_file_loads_as_none(tmp_path):
    store = StateStore(str(tmp_path / "crawl-state.json"))
    assert not store.exists()
    assert store.load() is None


def test_save_then_load(tmp_path):
    store = StateStore(str(tmp_path / "nested" / "crawl-state.json"))
    state = CrawlState.seeded("https://example.com/b")
    state.visited.add(START)
    state.add_to_stats("https://example.com/b", "Bee", START)
    assert store.save(state)

    with open(store.path, encoding="utf-8") as f:
        doc = json.load(f)
    assert "savedAt" in doc

    loaded = store.load()
    assert loaded.visited == {START}
    assert list(loaded.frontier) == ["https://example.com/b"]
    assert loaded.stats["https://example.com/b"].count == 1
    assert [p for p in os.listdir(os.path.dirname(store.path)) if p.startswith(".tmp-")] == []


def test_corrupt_or_invalid_file_is_treated_as_absent(tmp_path):
    path = tmp_path / "crawl-state.json"
    store = StateStore(str(path))
    path.write_text("{not json", encoding="utf-8")
    assert store.load() is None
    path.write_text(json.dumps({"visited": 3, "frontier": []}), encoding="utf-8")
    assert store.load() is None
    state, resumed = store.load_or_seed(START)
    assert not resumed
    assert list(state.frontier) == [START]


def test_load_or_seed_resumes_progress(tmp_path):
    store = StateStore(str(tmp_path / "crawl-state.json"))
    state = CrawlState.seeded("https://example.com/c")
    state.visited.add(START)
    store.save(state)

    loaded, resumed = store.load_or_seed(START)
    assert resumed
    assert list(loaded.frontier) == ["https://example.com/c"]


def test_state_without_progress_is_reseeded(tmp_path):
    store = StateStore(str(tmp_path / "crawl-state.json"))
    store.save(CrawlState())
    state, resumed = store.load_or_seed(START)
    assert not resumed
    assert list(state.frontier) == [START]


def test_write_failure_is_reported_not_raised(tmp_path, monkeypatch):
    path = tmp_path / "crawl-state.json"
    store = StateStore(str(path))
    store.save(CrawlState.seeded(START))

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(checkpoint.os, "replace", boom)
    state = CrawlState.seeded("https://example.com/other")
    state.visited.add(START)
    assert store.save(state) is False
    # previous checkpoint survives and no temp file is left behind
    assert list(store.load().frontier) == [START]
    assert [p.name for p in tmp_path.iterdir()] == ["crawl-state.json"]


def test_write_json_atomic_replaces_existing(tmp_path):
    path = tmp_path / "doc.json"
    write_json_atomic(str(path), {"a": 1})
    write_json_atomic(str(path), {"a": 2}, indent=2)
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": 2}
