"""Spaced-repetition familiarity tags backed by a daily WaniKani cache."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, TypedDict

import requests

from .errors import ConfigurationError, MalformedResponseError, TransientServiceError
from .store import JsonStore
from .types import ReviewStatus

logger = logging.getLogger(__name__)

BASE_URL = "https://api.wanikani.com/v2"
API_REVISION = "20170710"
CACHE_KEY = "review_status_cache"
CACHE_TTL_SECONDS = 24 * 60 * 60
REQUEST_TIMEOUT_SECONDS = 20

SRS_STAGES: Dict[int, ReviewStatus] = {
    1: {"label": "Apprentice I", "badge": "apprentice"},
    2: {"label": "Apprentice II", "badge": "apprentice"},
    3: {"label": "Apprentice III", "badge": "apprentice"},
    4: {"label": "Apprentice IV", "badge": "apprentice"},
    5: {"label": "Guru I", "badge": "guru"},
    6: {"label": "Guru II", "badge": "guru"},
    7: {"label": "Master", "badge": "master"},
    8: {"label": "Enlightened", "badge": "enlightened"},
    9: {"label": "Burned", "badge": "burned"},
}
NOT_TRACKED: ReviewStatus = {"label": "Not in WaniKani", "badge": "not-tracked"}
LOCKED: ReviewStatus = {"label": "Locked", "badge": "locked"}
UNKNOWN_STAGE: ReviewStatus = {"label": "Unknown", "badge": "locked"}


class Subject(TypedDict):
    id: int
    level: int
    kind: str


class StatusCache(TypedDict):
    timestamp: int
    subjects: Dict[str, Subject]
    assignments: Dict[int, int]


def _decode_cache(raw: Any) -> Optional[StatusCache]:
    """Rebuild a cache from its persisted form; ``None`` when unusable."""
    if not isinstance(raw, dict):
        return None
    try:
        timestamp = int(raw["timestamp"])
        subjects: Dict[str, Subject] = {
            str(chars): {"id": int(s["id"]), "level": int(s["level"]), "kind": str(s["kind"])}
            for chars, s in raw["subjects"].items()
        }
        assignments = {int(k): int(v) for k, v in raw["assignments"].items()}
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.warning("Discarding malformed review-status cache: %s", exc)
        return None
    return {"timestamp": timestamp, "subjects": subjects, "assignments": assignments}


def _encode_cache(cache: StatusCache) -> Dict[str, Any]:
    return {
        "timestamp": cache["timestamp"],
        "subjects": dict(cache["subjects"]),
        "assignments": {str(k): v for k, v in cache["assignments"].items()},
    }


class ReviewStatusAnnotator:
    def __init__(
        self,
        store: JsonStore,
        token: str | None,
        session: requests.Session | None = None,
        base_url: str = BASE_URL,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._token = token
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: Optional[StatusCache] = None
        self._cache_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._stop = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._configuration_error: Optional[str] = None

    @property
    def cache(self) -> Optional[StatusCache]:
        return self._cache

    def load_cache(self) -> None:
        cache = _decode_cache(self._store.get(CACHE_KEY))
        with self._cache_lock:
            self._cache = cache

    def is_stale(self) -> bool:
        cache = self._cache
        if cache is None:
            return True
        age_ms = self._clock() * 1000 - cache["timestamp"]
        return age_ms > self._ttl_seconds * 1000

    def start(self, refresh_interval: float | None = None) -> Optional[threading.Thread]:
        """Load the persisted cache and refresh it in the background if stale.

        With ``refresh_interval`` a daemon thread re-checks freshness on that
        schedule until ``stop()`` is called, so a failed refresh is retried on
        the next tick. A rejected or missing token ends the schedule.
        """
        self.load_cache()
        worker = self.refresh_in_background() if self.is_stale() else None
        if refresh_interval and self._token and self._timer is None:
            self._timer = threading.Thread(
                target=self._refresh_loop,
                args=(refresh_interval,),
                name="review-status-timer",
                daemon=True,
            )
            self._timer.start()
        return worker

    def stop(self) -> None:
        self._stop.set()

    @property
    def scheduled(self) -> bool:
        return self._timer is not None and self._timer.is_alive()

    def _refresh_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            if self._configuration_error is not None:
                logger.info("Scheduled review-status refresh stopped: %s", self._configuration_error)
                return
            if self.is_stale():
                self._refresh_logged()

    def refresh_in_background(self) -> Optional[threading.Thread]:
        if not self._token:
            logger.info("WANIKANI_API_TOKEN not set; review-status tags disabled")
            return None
        if self._refresh_lock.locked():
            return None
        worker = threading.Thread(target=self._refresh_logged, name="review-status-refresh", daemon=True)
        worker.start()
        return worker

    def _refresh_logged(self) -> None:
        try:
            self.refresh()
        except ConfigurationError as exc:
            self._configuration_error = str(exc)
            logger.warning("Review-status refresh failed: %s", exc)
        except (TransientServiceError, MalformedResponseError) as exc:
            logger.warning("Review-status refresh failed: %s", exc)

    def refresh(self) -> bool:
        """Fetch subjects and assignments and replace the cache.

        Returns ``False`` when another refresh is already running.
        """
        if not self._token:
            raise ConfigurationError("WANIKANI_API_TOKEN is not set")
        if not self._refresh_lock.acquire(blocking=False):
            return False
        try:
            logger.info("Fetching review-status data")
            subject_items = self._fetch_all_pages(
                f"{self._base_url}/subjects", {"types": "kanji,vocabulary", "hidden": "false"}
            )
            assignment_items = self._fetch_all_pages(
                f"{self._base_url}/assignments", {"subject_types": "kanji,vocabulary"}
            )
            subjects: Dict[str, Subject] = {}
            assignments: Dict[int, int] = {}
            try:
                for item in subject_items:
                    data = item.get("data") or {}
                    chars = data.get("characters")
                    if chars:
                        subjects[chars] = {
                            "id": int(item["id"]),
                            "level": int(data.get("level", 0)),
                            "kind": str(item.get("object", "")),
                        }
                for item in assignment_items:
                    data = item.get("data") or {}
                    if "subject_id" in data and "srs_stage" in data:
                        assignments[int(data["subject_id"])] = int(data["srs_stage"])
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise MalformedResponseError(f"Unexpected WaniKani payload: {exc}") from exc

            cache: StatusCache = {
                "timestamp": int(self._clock() * 1000),
                "subjects": subjects,
                "assignments": assignments,
            }
            with self._cache_lock:
                self._cache = cache
            self._store.set(CACHE_KEY, _encode_cache(cache))
            logger.info("Cached %s subjects, %s assignments", len(subjects), len(assignments))
            return True
        finally:
            self._refresh_lock.release()

    def _fetch_all_pages(self, url: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        next_params: Optional[Dict[str, str]] = params
        while next_url:
            try:
                response = self._session.get(
                    next_url,
                    params=next_params,
                    headers={
                        "Authorization": f"Bearer {self._token}",
                        "Wanikani-Revision": API_REVISION,
                    },
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
            except requests.RequestException as exc:
                raise TransientServiceError(f"WaniKani request failed: {exc}") from exc
            if response.status_code == 401:
                raise ConfigurationError("WANIKANI_API_TOKEN was rejected")
            if not response.ok:
                raise TransientServiceError(f"WaniKani API error {response.status_code}")
            try:
                body = response.json()
            except ValueError as exc:
                raise TransientServiceError("WaniKani returned invalid JSON") from exc
            items.extend(body.get("data") or [])
            next_url = (body.get("pages") or {}).get("next_url")
            next_params = None
        return items

    def lookup(self, word: str) -> Optional[ReviewStatus]:
        """Familiarity tag for ``word``; ``None`` until a cache is available."""
        cache = self._cache
        if cache is None:
            return None
        subject = cache["subjects"].get(word)
        if subject is None:
            return dict(NOT_TRACKED)  # type: ignore[return-value]
        stage = cache["assignments"].get(subject["id"])
        if stage is None:
            return dict(LOCKED)  # type: ignore[return-value]
        return dict(SRS_STAGES.get(stage, UNKNOWN_STAGE))  # type: ignore[return-value]


__all__ = ["ReviewStatusAnnotator", "SRS_STAGES", "CACHE_KEY", "CACHE_TTL_SECONDS"]
