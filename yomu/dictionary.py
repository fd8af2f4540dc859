"""Local dictionary lookups against a preloaded headword index.

The index is a JSON object mapping each headword to its pre-ranked entries in
a compact JMdict export format::

    {"食べる": [{"w": "食べる", "r": "たべる", "m": "to eat", "p": "Ichidan verb",
                "c": 1, "s": [{"m": "to live on", "p": "Ichidan verb"}]}]}

Entry order encodes commonness and is never changed.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, cast

from .errors import InvalidStateError, TransientServiceError
from .types import DictionaryCandidate, Sense

logger = logging.getLogger(__name__)

MEANING_SEPARATOR = "; "

RawIndex = Dict[str, List[Dict[str, Any]]]


def _sense(meaning: str, pos: Optional[str]) -> Sense:
    return {
        "definitions": meaning.split(MEANING_SEPARATOR) if meaning else [],
        "parts_of_speech": [pos] if pos else [],
    }


def _candidate(entry: Dict[str, Any]) -> DictionaryCandidate:
    headword = entry["w"]
    reading = entry.get("r") or ""
    meaning = entry.get("m") or ""
    pos = entry.get("p") or ""
    if not isinstance(headword, str) or not isinstance(meaning, str):
        raise TypeError("entry fields must be strings")
    senses = [_sense(meaning, pos)]
    for extra in entry.get("s") or []:
        senses.append(_sense(extra.get("m") or "", extra.get("p")))
    return {
        "headword": headword,
        "reading": reading,
        "primary_meaning": meaning,
        "primary_pos": pos,
        "senses": senses,
        "is_common": bool(entry.get("c")),
    }


class DictionaryIndex:
    def __init__(self, path: Path) -> None:
        self._path = path
        self._index: RawIndex | None = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._index is not None

    def load(self) -> RawIndex:
        """Load the index once; concurrent callers wait for the same load."""
        index = self._index
        if index is not None:
            return index
        with self._lock:
            if self._index is not None:
                return self._index
            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    raw: Any = json.load(fh)
            except (OSError, json.JSONDecodeError, ValueError) as exc:
                raise TransientServiceError(f"Dictionary index {self._path} could not be loaded: {exc}") from exc
            if not isinstance(raw, dict):
                raise TransientServiceError(f"Dictionary index {self._path} is not an object")
            self._index = cast(RawIndex, raw)
            logger.info("Loaded dictionary index with %s headwords", len(self._index))
            return self._index

    def preload(self) -> None:
        def _run() -> None:
            try:
                self.load()
            except TransientServiceError as exc:
                logger.warning("Dictionary preload failed: %s", exc)

        threading.Thread(target=_run, name="dictionary-preload", daemon=True).start()

    def search(self, headword: str) -> List[DictionaryCandidate]:
        """Candidates for ``headword`` in index order; empty on any miss."""
        try:
            index = self.load()
        except TransientServiceError as exc:
            logger.warning("Dictionary lookup for %r skipped: %s", headword, exc)
            return []
        entries = index.get(headword)
        if not entries or not isinstance(entries, list):
            return []
        try:
            return [_candidate(entry) for entry in entries]
        except (KeyError, TypeError, AttributeError) as exc:
            logger.warning("Malformed dictionary entry for %r: %s", headword, exc)
            return []


LookupState = Literal["loading", "loaded", "closed"]


class Lookup:
    """Per-tap candidate selection: loading, loaded with a selection, closed."""

    def __init__(self) -> None:
        self.state: LookupState = "loading"
        self.candidates: List[DictionaryCandidate] = []
        self.selected = 0

    @property
    def current(self) -> Optional[DictionaryCandidate]:
        if self.state != "loaded" or not self.candidates:
            return None
        return self.candidates[self.selected]

    def loaded(self, candidates: List[DictionaryCandidate]) -> None:
        if self.state != "loading":
            raise InvalidStateError(f"cannot load candidates while {self.state}")
        self.candidates = list(candidates)
        self.selected = 0
        self.state = "loaded"

    def select(self, index: int) -> DictionaryCandidate:
        if self.state != "loaded":
            raise InvalidStateError(f"cannot select a candidate while {self.state}")
        if not 0 <= index < len(self.candidates):
            raise InvalidStateError(f"candidate {index} does not exist")
        self.selected = index
        return self.candidates[index]

    def close(self) -> None:
        self.state = "closed"


__all__ = ["DictionaryIndex", "Lookup", "LookupState"]
