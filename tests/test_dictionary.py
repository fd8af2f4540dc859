"""Tests for the dictionary index and the lookup state machine."""

import json
import threading

import pytest

from yomu.dictionary import DictionaryIndex, Lookup
from yomu.errors import InvalidStateError, TransientServiceError


def test_search_returns_ranked_candidates(dictionary_path):
    candidates = DictionaryIndex(dictionary_path).search("食べる")
    assert len(candidates) == 1
    first = candidates[0]
    assert first["headword"] == "食べる"
    assert first["reading"] == "たべる"
    assert first["primary_meaning"] == "to eat"
    assert first["is_common"] is True
    assert first["senses"][0] == {"definitions": ["to eat"], "parts_of_speech": ["Ichidan verb"]}
    assert first["senses"][1]["definitions"] == ["to live on", "to subsist on"]


def test_search_preserves_index_order(dictionary_path):
    readings = [c["reading"] for c in DictionaryIndex(dictionary_path).search("夜")]
    assert readings == ["よる", "よ"]


def test_miss_is_empty(dictionary_path):
    assert DictionaryIndex(dictionary_path).search("存在しない") == []


def test_missing_file_leaves_index_unloaded(tmp_path):
    index = DictionaryIndex(tmp_path / "absent.json")
    assert index.search("夜") == []
    assert not index.loaded
    with pytest.raises(TransientServiceError):
        index.load()


def test_malformed_entry_is_a_miss(tmp_path):
    path = tmp_path / "index.json"
    path.write_text(json.dumps({"夜": [{"r": "よる"}]}), encoding="utf-8")
    assert DictionaryIndex(path).search("夜") == []


def test_concurrent_loads_share_one_index(dictionary_path):
    index = DictionaryIndex(dictionary_path)
    seen = []

    def worker():
        seen.append(index.load())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(seen) == 8
    assert all(result is seen[0] for result in seen)


class TestLookup:
    def test_select_and_close(self, dictionary_path):
        lookup = Lookup()
        assert lookup.current is None
        lookup.loaded(DictionaryIndex(dictionary_path).search("夜"))
        assert lookup.current["reading"] == "よる"
        assert lookup.select(1)["reading"] == "よ"
        assert lookup.current["reading"] == "よ"
        lookup.close()
        assert lookup.state == "closed"
        assert lookup.current is None

    def test_select_out_of_range(self):
        lookup = Lookup()
        lookup.loaded([])
        with pytest.raises(InvalidStateError):
            lookup.select(0)

    def test_select_before_loaded(self):
        with pytest.raises(InvalidStateError):
            Lookup().select(0)

    def test_cannot_load_after_close(self):
        lookup = Lookup()
        lookup.close()
        with pytest.raises(InvalidStateError):
            lookup.loaded([])
