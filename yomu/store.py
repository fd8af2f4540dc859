"""Durable key-value persistence backed by a single JSON file."""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, cast

logger = logging.getLogger(__name__)


class JsonStore:
    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                raw: Any = json.load(fh)
        except (json.JSONDecodeError, OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self._path, exc)
            return
        if not isinstance(raw, dict):
            logger.warning("Ignoring state file %s: top level is not an object", self._path)
            return
        self._data = cast(Dict[str, Any], raw)

    def _persist(self) -> None:
        tmp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump(self._data, fh, ensure_ascii=False)
            tmp_path.replace(self._path)
        except OSError as exc:
            logger.error("Failed to persist state to %s: %s", self._path, exc)
            tmp_path.unlink(missing_ok=True)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)
            self._persist()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._persist()


__all__ = ["JsonStore"]
