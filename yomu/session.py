"""Per-session state and the tap-to-flashcard pipeline.

A ``Session`` owns everything the UI can see: the current capture, its tap
targets, the segmentation-fix merge map, the open dictionary lookup and the
generation token. Every capture and every tap bumps the token; a resolution
that finishes after the token moved on is returned marked ``stale`` and never
written back.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, TypedDict

from .config import Settings
from .dictionary import DictionaryIndex, Lookup
from .errors import (
    BusyError,
    DuplicateNoteError,
    InvalidStateError,
    MalformedResponseError,
    TransientServiceError,
)
from .flashcards import AnkiConnectClient, FlashcardSyncQueue
from .geometry import build_tap_targets, extract_context
from .layout import detect_layout
from .llm import build_provider
from .morphology import MorphologicalResolver, Outcome, SudachiAnalyzer
from .ocr import VisionOCR, image_size
from .review_status import ReviewStatusAnnotator
from .segmentation import SegmentationCorrector, apply_correction
from .sentences import SentenceGenerator
from .store import JsonStore
from .types import (
    HORIZONTAL,
    Annotation,
    DictionaryCandidate,
    Layout,
    MergeGroup,
    MergeMap,
    ReviewStatus,
    TapTarget,
)

logger = logging.getLogger(__name__)


class TapOutcome(TypedDict):
    generation: int
    stale: bool
    index: int
    word: str
    context: str
    original: str
    dictionary: str
    outcome: Outcome
    candidates: List[DictionaryCandidate]
    selected: int
    review_status: Optional[ReviewStatus]
    in_flashcards: bool
    queued: bool


class EnhanceOutcome(TypedDict, total=False):
    enhanced: bool
    groups: List[MergeGroup]
    error: str


def _copy_annotations(annotations: Sequence[Annotation]) -> List[Annotation]:
    return [{"index": a["index"], "text": a["text"], "poly": list(a["poly"])} for a in annotations]


class Session:
    def __init__(
        self,
        ocr: VisionOCR,
        resolver: MorphologicalResolver,
        dictionary: DictionaryIndex,
        annotator: ReviewStatusAnnotator | None,
        flashcards: AnkiConnectClient,
        queue: FlashcardSyncQueue,
        corrector_factory: Callable[[], SegmentationCorrector],
        sentence_factory: Callable[[], SentenceGenerator],
        preloaders: Sequence[Callable[[], None]] = (),
        review_refresh_interval: float | None = None,
    ) -> None:
        self._ocr = ocr
        self._resolver = resolver
        self._dictionary = dictionary
        self._annotator = annotator
        self._flashcards = flashcards
        self._queue = queue
        self._corrector_factory = corrector_factory
        self._sentence_factory = sentence_factory
        self._preloaders = list(preloaders)
        self._review_refresh_interval = review_refresh_interval

        self._lock = threading.RLock()
        self._busy: Optional[str] = None
        self._generation = 0
        self._image_size: tuple[int, int] = (0, 0)
        self._original_annotations: List[Annotation] = []
        self._annotations: List[Annotation] = []
        self._layout: Layout = HORIZONTAL
        self._merge_map: MergeMap = {}
        self._groups: List[MergeGroup] = []
        self._enhanced = False
        self._lookup: Optional[Lookup] = None
        self._tap: Optional[TapOutcome] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Session":
        store = JsonStore(settings.state_path)
        analyzer = SudachiAnalyzer()
        dictionary = DictionaryIndex(settings.dict_path)
        client = AnkiConnectClient(
            url=settings.anki_connect_url,
            deck_name=settings.anki_deck_name,
            model_name=settings.anki_model_name,
            timeout=settings.anki_timeout_seconds,
        )
        annotator = ReviewStatusAnnotator(store, settings.wanikani_api_token)
        return cls(
            ocr=VisionOCR(settings.google_vision_api_key),
            resolver=MorphologicalResolver(analyzer),
            dictionary=dictionary,
            annotator=annotator,
            flashcards=client,
            queue=FlashcardSyncQueue(store, client),
            corrector_factory=lambda: SegmentationCorrector(build_provider(settings)),
            sentence_factory=lambda: SentenceGenerator(build_provider(settings)),
            preloaders=[dictionary.preload, analyzer.preload],
            review_refresh_interval=settings.review_refresh_interval_seconds,
        )

    # ---- lifecycle ----

    def start(self) -> None:
        """Warm up lazy resources and sync anything queued while offline."""
        for preload in self._preloaders:
            preload()
        if self._annotator is not None:
            self._annotator.start(refresh_interval=self._review_refresh_interval)
        threading.Thread(target=self._initial_flush, name="flashcard-initial-flush", daemon=True).start()

    def stop(self) -> None:
        if self._annotator is not None:
            self._annotator.stop()

    def _initial_flush(self) -> None:
        count = self._queue.flush()
        if count:
            logger.info("%s card(s) synced to Anki on start-up", count)

    # ---- read-only views ----

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def layout(self) -> Layout:
        return self._layout

    @property
    def enhanced(self) -> bool:
        return self._enhanced

    @property
    def annotations(self) -> List[Annotation]:
        with self._lock:
            return _copy_annotations(self._annotations)

    @property
    def merge_map(self) -> MergeMap:
        with self._lock:
            return dict(self._merge_map) if self._enhanced else {}

    @property
    def lookup(self) -> Optional[Lookup]:
        return self._lookup

    def tap_targets(self) -> List[TapTarget]:
        with self._lock:
            width, height = self._image_size
            if not self._annotations:
                return []
            merge_map = self._merge_map if self._enhanced else None
            return build_tap_targets(self._annotations, width, height, merge_map)

    # ---- capture ----

    def _claim(self, operation: str) -> None:
        if self._busy is not None:
            raise BusyError(f"{self._busy} is still running")
        self._busy = operation

    def capture(self, image_bytes: bytes) -> Dict[str, Any]:
        """Run OCR on a new page and reset all per-capture state."""
        with self._lock:
            self._claim("capture")
            self._generation += 1
            generation = self._generation
        try:
            width, height = image_size(image_bytes)
            annotations = self._ocr.detect(image_bytes)
            layout = detect_layout(annotations)
            with self._lock:
                self._image_size = (width, height)
                self._original_annotations = _copy_annotations(annotations)
                self._annotations = _copy_annotations(annotations)
                self._layout = layout
                self._merge_map = {}
                self._groups = []
                self._enhanced = False
                if self._lookup is not None:
                    self._lookup.close()
                self._lookup = None
                self._tap = None
            logger.info("Capture %s: %s annotations, layout %s", generation, len(annotations), layout)
            return {
                "generation": generation,
                "image_size": {"w": width, "h": height},
                "layout": layout,
                "annotation_count": len(annotations),
            }
        finally:
            with self._lock:
                self._busy = None

    # ---- segmentation fix ----

    def enhance(self) -> EnhanceOutcome:
        """Toggle the segmentation fix for the current capture.

        Turning it off restores the annotations exactly as OCR returned them.
        Transient or malformed collaborator answers leave the fix off and are
        reported in ``error``; a missing credential raises ConfigurationError.
        """
        with self._lock:
            if not self._original_annotations:
                raise InvalidStateError("nothing has been captured yet")
            if self._enhanced:
                self._annotations = _copy_annotations(self._original_annotations)
                self._merge_map = {}
                self._groups = []
                self._enhanced = False
                return {"enhanced": False, "groups": []}
            self._claim("enhance")
            original = _copy_annotations(self._original_annotations)
            layout = self._layout

        try:
            corrector = self._corrector_factory()
            response = corrector.correct(original, layout)
        except (TransientServiceError, MalformedResponseError) as exc:
            logger.warning("Segmentation fix failed: %s", exc)
            return {"enhanced": False, "groups": [], "error": str(exc)}
        finally:
            with self._lock:
                self._busy = None

        result = apply_correction(original, response)
        with self._lock:
            self._annotations = result.annotations
            self._merge_map = result.merge_map
            self._groups = result.groups
            self._enhanced = True
        return {"enhanced": True, "groups": list(result.groups)}

    # ---- tap → lookup ----

    def _word_at(self, index: int) -> str:
        entry = self._merge_map.get(index) if self._enhanced else None
        if entry is not None:
            return entry["combined_text"]
        return self._annotations[index]["text"]

    def tap(self, index: int) -> TapOutcome:
        """Resolve the word at ``index`` through morphology, dictionary and status.

        Every stage degrades to an empty result instead of failing the tap.
        """
        with self._lock:
            if not 0 <= index < len(self._annotations):
                raise InvalidStateError(f"no annotation at index {index}")
            self._generation += 1
            generation = self._generation
            word = self._word_at(index)
            annotations = _copy_annotations(self._annotations)
            if self._lookup is not None:
                self._lookup.close()
            lookup = Lookup()
            self._lookup = lookup

        context = extract_context(annotations, index)
        resolution = self._resolver.resolve(word, context)
        candidates = self._dictionary.search(resolution.dictionary)
        headword = candidates[0]["headword"] if candidates else resolution.dictionary
        review_status = self._annotator.lookup(headword) if self._annotator is not None else None
        in_flashcards = self._flashcards.exists_in_deck(headword)
        queued = self._queue.contains(headword)

        outcome: TapOutcome = {
            "generation": generation,
            "stale": False,
            "index": index,
            "word": word,
            "context": context,
            "original": resolution.original,
            "dictionary": resolution.dictionary,
            "outcome": resolution.outcome,
            "candidates": candidates,
            "selected": 0,
            "review_status": review_status,
            "in_flashcards": in_flashcards,
            "queued": queued,
        }
        with self._lock:
            if generation != self._generation or lookup.state == "closed":
                logger.debug("Discarding stale tap result for generation %s", generation)
                outcome["stale"] = True
                return outcome
            lookup.loaded(candidates)
            self._tap = outcome
        return outcome

    def select_candidate(self, index: int) -> Dict[str, Any]:
        """Switch the open lookup to another candidate without re-fetching."""
        with self._lock:
            if self._lookup is None:
                raise InvalidStateError("no lookup is open")
            candidate = self._lookup.select(index)
        headword = candidate["headword"] or candidate["reading"]
        return {
            "selected": index,
            "candidate": candidate,
            "review_status": self._annotator.lookup(headword) if self._annotator is not None else None,
            "in_flashcards": self._flashcards.exists_in_deck(headword),
            "queued": self._queue.contains(headword),
        }

    def close_lookup(self) -> None:
        with self._lock:
            if self._lookup is not None:
                self._lookup.close()
            self._tap = None

    # ---- flashcards ----

    def _card_source(self, word: str | None) -> tuple[str, str, str, str]:
        """Target word, reading, meaning and page context for a new card.

        The open lookup supplies reading and meaning only when ``word`` is
        unset or names the selected candidate; any other word is looked up on
        its own.
        """
        with self._lock:
            lookup = self._lookup
            candidate = lookup.current if lookup is not None else None
            tap = self._tap
        if candidate is not None and (word is None or word in (candidate["headword"], candidate["reading"])):
            target = word or candidate["headword"] or candidate["reading"]
            return target, candidate["reading"], candidate["primary_meaning"], tap["context"] if tap else ""
        if word:
            matches = self._dictionary.search(word)
            reading, meaning = (matches[0]["reading"], matches[0]["primary_meaning"]) if matches else ("", "")
            context = tap["context"] if tap is not None and word in (tap["word"], tap["dictionary"]) else ""
            return word, reading, meaning, context
        if tap is not None:
            return tap["dictionary"], "", "", tap["context"]
        raise InvalidStateError("no word selected")

    def _build_payload(self, source: tuple[str, str, str, str]) -> Dict[str, Any]:
        target, reading, meaning, context = source
        sentences = self._sentence_factory().generate(target, reading, meaning, context)
        return {"reading": reading, "meaning": meaning, **sentences}

    def card_payload(self, word: str | None = None) -> tuple[str, Dict[str, Any]]:
        source = self._card_source(word)
        return source[0], self._build_payload(source)

    def queue_card(self, word: str | None = None) -> Dict[str, Any]:
        source = self._card_source(word)
        target = source[0]
        if self._queue.contains(target):
            return {"word": target, "queued": False, "queue_count": self._queue.count()}
        added = self._queue.enqueue(target, self._build_payload(source))
        return {"word": target, "queued": added, "queue_count": self._queue.count()}

    def add_card(self, word: str | None = None) -> Dict[str, Any]:
        """Create the note right away; a duplicate counts as already present."""
        target, payload = self.card_payload(word)
        try:
            note_id: Optional[int] = self._flashcards.add_note(target, payload)
        except DuplicateNoteError:
            note_id = None
        return {"word": target, "note_id": note_id, "in_flashcards": True}

    def flush_queue(self) -> Dict[str, Any]:
        synced = self._queue.flush()
        return {
            "synced": synced,
            "reachable": self._flashcards.reachable,
            "remaining": self._queue.count(),
        }

    def queue_items(self) -> List[Dict[str, Any]]:
        return [dict(item) for item in self._queue.items()]


__all__ = ["Session", "TapOutcome", "EnhanceOutcome"]
