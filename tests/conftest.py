"""
Pytest configuration and fixtures for Yomu tests.
"""

import io
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests
from PIL import Image

from yomu.dictionary import DictionaryIndex
from yomu.flashcards import AnkiConnectClient, FlashcardSyncQueue
from yomu.morphology import MorphologicalResolver
from yomu.segmentation import SegmentationCorrector
from yomu.sentences import SentenceGenerator
from yomu.session import Session
from yomu.store import JsonStore


def make_annotation(index, text, x, y, w=20, h=20):
    return {
        "index": index,
        "text": text,
        "poly": [(x, y), (x + w, y), (x + w, y + h), (x, y + h)],
    }


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, headers: Optional[Dict[str, str]] = None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)  # type: ignore[arg-type]


class FakeHTTPSession:
    """Stands in for requests.Session; replies come from a handler callable."""

    def __init__(self, handler: Callable[..., Any]):
        self._handler = handler
        self.calls: List[Dict[str, Any]] = []

    def _dispatch(self, method: str, url: str, **kwargs: Any) -> Any:
        self.calls.append({"method": method, "url": url, **kwargs})
        result = self._handler(method, url, **kwargs)
        if isinstance(result, Exception):
            raise result
        return result

    def post(self, url: str, **kwargs: Any) -> Any:
        return self._dispatch("POST", url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> Any:
        return self._dispatch("GET", url, **kwargs)


class FakeAnalyzer:
    def __init__(self, table: Optional[Dict[str, List[Dict[str, Any]]]] = None, error: Optional[Exception] = None):
        self.table = table or {}
        self.error = error
        self.calls: List[str] = []

    def tokenize(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.table.get(text, [])


class FakeProvider:
    name = "fake"

    def __init__(self, content: Any = None, error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.prompts: List[str] = []

    def complete_json(self, system_prompt, user_prompt, *, schema=None):
        self.prompts.append(user_prompt)
        if self.error is not None:
            raise self.error
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, ensure_ascii=False)


DICTIONARY = {
    "食べる": [
        {"w": "食べる", "r": "たべる", "m": "to eat", "p": "Ichidan verb", "c": 1,
         "s": [{"m": "to live on; to subsist on", "p": "Ichidan verb"}]},
    ],
    "夜": [
        {"w": "夜", "r": "よる", "m": "evening; night", "p": "Noun", "c": 1},
        {"w": "夜", "r": "よ", "m": "night", "p": "Noun"},
    ],
}


@pytest.fixture
def dictionary_path(tmp_path: Path) -> Path:
    path = tmp_path / "index.json"
    path.write_text(json.dumps(DICTIONARY, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def store(tmp_path: Path) -> JsonStore:
    return JsonStore(tmp_path / "state.json")


@pytest.fixture
def tabeteiru_tokens() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "食べている": [
            {"surface": "食べ", "base_form": "食べる", "part_of_speech": "動詞"},
            {"surface": "て", "base_form": "て", "part_of_speech": "助詞"},
            {"surface": "いる", "base_form": "いる", "part_of_speech": "動詞"},
        ],
    }


class FakeAnki:
    """AnkiConnect double keyed on the request action."""

    def __init__(self, online=True):
        self.online = online
        self.notes = {}
        self.fail_words = set()
        self.next_id = 1000

    def __call__(self, method, url, **kwargs):
        if not self.online:
            return requests.ConnectionError("connection refused")
        body = kwargs["json"]
        action = body["action"]
        assert body["version"] == 6
        if action == "version":
            return FakeResponse({"result": 6, "error": None})
        if action == "addNote":
            word = body["params"]["note"]["fields"]["Front"]
            if word in self.fail_words:
                return FakeResponse({"result": None, "error": "collection is not available"})
            if word in self.notes:
                return FakeResponse({"result": None, "error": "cannot create note because it is a duplicate"})
            self.next_id += 1
            self.notes[word] = body["params"]["note"]
            return FakeResponse({"result": self.next_id, "error": None})
        if action == "findNotes":
            query = body["params"]["query"]
            found = [1 for word in self.notes if f'front:"{word}"' in query]
            return FakeResponse({"result": found, "error": None})
        return FakeResponse({"result": None, "error": f"unsupported action {action}"})


class FakeOCR:
    def __init__(self, annotations=None, error=None, hook=None):
        self.annotations = annotations or []
        self.error = error
        self.hook = hook

    def detect(self, image_bytes):
        if self.hook is not None:
            self.hook()
        if self.error is not None:
            raise self.error
        return [dict(a) for a in self.annotations]


@pytest.fixture
def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (200, 100), "white").save(buffer, format="PNG")
    return buffer.getvalue()


SENTENCES = {"sentence_1": "毎日[まいにち]食[た]べる", "sentence_2": "夜[よる]に食[た]べる"}


def split_verb():
    return [
        make_annotation(0, "食べ", 0, 0),
        make_annotation(1, "て", 20, 0),
        make_annotation(2, "い", 40, 0),
        make_annotation(3, "る", 60, 0),
    ]


class Harness:
    def __init__(self, dictionary_path, store, tokens=None, annotations=None, annotator=None, review_refresh_interval=None):
        self.ocr = FakeOCR(annotations if annotations is not None else split_verb())
        self.analyzer = FakeAnalyzer(tokens or {})
        self.anki = FakeAnki()
        self.correction = FakeProvider({"mergedGroups": [[0, 1, 2, 3]], "correctedText": {}})
        self.sentences = FakeProvider(SENTENCES)
        self.client = AnkiConnectClient(session=FakeHTTPSession(self.anki))
        self.queue = FlashcardSyncQueue(store, self.client)
        self.session = Session(
            ocr=self.ocr,
            resolver=MorphologicalResolver(self.analyzer),
            dictionary=DictionaryIndex(dictionary_path),
            annotator=annotator,
            flashcards=self.client,
            queue=self.queue,
            corrector_factory=lambda: SegmentationCorrector(self.correction),
            sentence_factory=lambda: SentenceGenerator(self.sentences),
            review_refresh_interval=review_refresh_interval,
        )


@pytest.fixture
def harness(dictionary_path, store, tabeteiru_tokens):
    return Harness(dictionary_path, store, tokens=tabeteiru_tokens)
