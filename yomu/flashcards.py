"""AnkiConnect delivery and the durable offline flashcard queue."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List

import requests

from .config import DEFAULT_ANKI_CONNECT_URL, DEFAULT_ANKI_DECK_NAME, DEFAULT_ANKI_MODEL_NAME
from .errors import DuplicateNoteError, TransientServiceError
from .store import JsonStore
from .types import QueueItem

logger = logging.getLogger(__name__)

API_VERSION = 6
QUEUE_KEY = "flashcard_queue"
NOTE_TAG = "yomu"


class AnkiConnectClient:
    def __init__(
        self,
        url: str = DEFAULT_ANKI_CONNECT_URL,
        deck_name: str = DEFAULT_ANKI_DECK_NAME,
        model_name: str = DEFAULT_ANKI_MODEL_NAME,
        timeout: float = 3.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url
        self._deck_name = deck_name
        self._model_name = model_name
        self._timeout = timeout
        self._session = session or requests.Session()
        self.reachable = False

    def _request(self, action: str, **params: Any) -> Any:
        try:
            response = self._session.post(
                self._url,
                json={"action": action, "version": API_VERSION, "params": params},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransientServiceError(f"AnkiConnect unreachable: {exc}") from exc
        if not response.ok:
            raise TransientServiceError(f"AnkiConnect HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise TransientServiceError("AnkiConnect returned invalid JSON") from exc
        error = body.get("error") if isinstance(body, dict) else "unexpected response shape"
        if error:
            if "duplicate" in str(error).lower():
                raise DuplicateNoteError(str(error))
            raise TransientServiceError(f"AnkiConnect error: {error}")
        return body.get("result")

    def ping(self) -> bool:
        """Probe the service and remember whether it answered."""
        try:
            self._request("version")
        except (TransientServiceError, DuplicateNoteError) as exc:
            logger.info("AnkiConnect not reachable: %s", exc)
            self.reachable = False
        else:
            self.reachable = True
        return self.reachable

    def build_note(self, word: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "deckName": self._deck_name,
            "modelName": self._model_name,
            "fields": {
                "Front": word,
                "Reading": payload.get("reading") or "",
                "Sentence1": payload.get("sentence_1") or "",
                "Sentence2": payload.get("sentence_2") or "",
            },
            "options": {"allowDuplicate": False},
            "tags": [NOTE_TAG],
        }

    def add_note(self, word: str, payload: Dict[str, Any]) -> int:
        """Create a note; raises DuplicateNoteError if the deck already has it."""
        note_id = self._request("addNote", note=self.build_note(word, payload))
        if not isinstance(note_id, int):
            raise TransientServiceError(f"AnkiConnect returned no note id for {word!r}")
        return note_id

    def exists_in_deck(self, word: str) -> bool:
        if not self.reachable:
            return False
        try:
            note_ids = self._request("findNotes", query=f'deck:"{self._deck_name}" front:"{word}"')
        except (TransientServiceError, DuplicateNoteError) as exc:
            logger.warning("AnkiConnect findNotes failed for %r: %s", word, exc)
            return False
        return bool(note_ids)


def _decode_queue(raw: Any) -> List[QueueItem]:
    if not isinstance(raw, list):
        return []
    items: List[QueueItem] = []
    seen: set[str] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        word = entry.get("word")
        payload = entry.get("payload")
        enqueued_at = entry.get("enqueued_at")
        if not isinstance(word, str) or not word or word in seen:
            continue
        if not isinstance(payload, dict):
            continue
        seen.add(word)
        items.append(
            {
                "word": word,
                "payload": payload,
                "enqueued_at": int(enqueued_at) if isinstance(enqueued_at, (int, float)) else 0,
            }
        )
    return items


class FlashcardSyncQueue:
    """Deduplicated queue of card requests, delivered one at a time."""

    def __init__(
        self,
        store: JsonStore,
        client: AnkiConnectClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._client = client
        self._clock = clock
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._items: List[QueueItem] = _decode_queue(store.get(QUEUE_KEY, []))

    def _persist(self) -> None:
        self._store.set(QUEUE_KEY, self._items)

    def enqueue(self, word: str, payload: Dict[str, Any]) -> bool:
        """Append a card request; returns ``False`` if ``word`` is already queued."""
        with self._lock:
            if any(item["word"] == word for item in self._items):
                return False
            self._items.append({"word": word, "payload": dict(payload), "enqueued_at": int(self._clock() * 1000)})
            self._persist()
            return True

    def contains(self, word: str) -> bool:
        with self._lock:
            return any(item["word"] == word for item in self._items)

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def items(self) -> List[QueueItem]:
        with self._lock:
            return [dict(item) for item in self._items]  # type: ignore[misc]

    def _remove(self, word: str) -> None:
        with self._lock:
            self._items = [item for item in self._items if item["word"] != word]
            self._persist()

    def flush(self) -> int:
        """Deliver queued cards sequentially and return how many were created.

        Returns 0 without touching the queue when the service does not answer
        the probe, or when another flush is already running.
        """
        if not self._flush_lock.acquire(blocking=False):
            logger.info("Flashcard flush already in progress; skipping")
            return 0
        try:
            if not self._client.ping():
                return 0
            synced = 0
            for item in self.items():
                word = item["word"]
                try:
                    self._client.add_note(word, item["payload"])
                except DuplicateNoteError:
                    logger.info("Flashcard for %r already exists; dropping from queue", word)
                    self._remove(word)
                except TransientServiceError as exc:
                    logger.warning("Flashcard queue flush failed for %r: %s", word, exc)
                else:
                    self._remove(word)
                    synced += 1
            if synced:
                logger.info("Synced %s queued flashcard(s)", synced)
            return synced
        finally:
            self._flush_lock.release()


__all__ = ["AnkiConnectClient", "FlashcardSyncQueue", "QUEUE_KEY"]
