"""De-inflect a tapped surface form to its dictionary headword.

This is a single-token heuristic, not sentence-level analysis: the first
content token wins, so compounds the analyzer splits resolve to their first
part.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Literal, NamedTuple, Optional, Protocol, Sequence

from sudachipy import Dictionary, SplitMode  # type: ignore[import]

from .types import MorphToken

logger = logging.getLogger(__name__)

PARTICLE = "助詞"
SYMBOLS = frozenset({"記号", "補助記号"})

Outcome = Literal["resolved", "fallback", "unresolved"]


class Analyzer(Protocol):
    def tokenize(self, text: str) -> List[MorphToken]:
        ...


class Resolution(NamedTuple):
    original: str
    dictionary: str
    outcome: Outcome


class SudachiAnalyzer:
    """SudachiPy tokenizer, built on first use and shared afterwards."""

    def __init__(self, dict_type: str = "core", split_mode: str = "C") -> None:
        self._dict_type = dict_type
        self._split_mode = split_mode
        self._tokenizer: Any | None = None
        self._mode: Any | None = None
        self._lock = threading.Lock()

    def load(self) -> None:
        with self._lock:
            if self._tokenizer is not None:
                return
            self._tokenizer = Dictionary(dict=self._dict_type).create()
            self._mode = getattr(SplitMode, self._split_mode)
            logger.info("Sudachi tokenizer ready (dict=%s)", self._dict_type)

    def preload(self) -> None:
        def _run() -> None:
            try:
                self.load()
            except Exception as exc:  # noqa: BLE001 - any load failure falls back at tap time
                logger.warning("Sudachi preload failed: %s", exc)

        threading.Thread(target=_run, name="sudachi-preload", daemon=True).start()

    def tokenize(self, text: str) -> List[MorphToken]:
        self.load()
        tokens: List[MorphToken] = []
        for morpheme in self._tokenizer.tokenize(text, self._mode):  # type: ignore[union-attr]
            base_form = morpheme.dictionary_form()
            pos = morpheme.part_of_speech()
            tokens.append(
                {
                    "surface": morpheme.surface(),
                    "base_form": base_form if base_form and base_form != "*" else None,
                    "part_of_speech": pos[0] if pos else "",
                }
            )
        return tokens


def _has_base_form(token: MorphToken) -> bool:
    base_form = token.get("base_form")
    return bool(base_form) and base_form != "*"


def _first_content_token(tokens: Sequence[MorphToken]) -> Optional[str]:
    for token in tokens:
        if not _has_base_form(token):
            continue
        if token["part_of_speech"] == PARTICLE or token["part_of_speech"] in SYMBOLS:
            continue
        return token["base_form"]
    return None


def _first_token(tokens: Sequence[MorphToken]) -> Optional[str]:
    if tokens and _has_base_form(tokens[0]):
        return tokens[0]["base_form"]
    return None


Strategy = Callable[[Sequence[MorphToken]], Optional[str]]

STRATEGIES: List[tuple[Outcome, Strategy]] = [
    ("resolved", _first_content_token),
    ("fallback", _first_token),
]


class MorphologicalResolver:
    def __init__(self, analyzer: Analyzer) -> None:
        self._analyzer = analyzer

    def resolve(self, surface: str, context: str | None = None) -> Resolution:
        """Return the headword for ``surface``; ``context`` is accepted but unused."""
        if not surface:
            return Resolution(surface, surface, "unresolved")
        try:
            tokens = self._analyzer.tokenize(surface)
        except Exception as exc:  # noqa: BLE001 - analyzer failures degrade to the surface form
            logger.warning("Morphological analysis failed for %r: %s", surface, exc)
            return Resolution(surface, surface, "unresolved")

        for outcome, strategy in STRATEGIES:
            headword = strategy(tokens)
            if headword:
                return Resolution(surface, headword, outcome)
        return Resolution(surface, surface, "unresolved")


__all__ = ["Analyzer", "Resolution", "SudachiAnalyzer", "MorphologicalResolver"]
