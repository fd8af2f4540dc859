"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_CEREBRAS_MODEL = "llama-3.3-70b"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_ANKI_CONNECT_URL = "http://localhost:8765"
DEFAULT_ANKI_DECK_NAME = "ALL KANJI COMBINED"
DEFAULT_ANKI_MODEL_NAME = "Japanese Vocab"
DEFAULT_REVIEW_REFRESH_INTERVAL_SECONDS = 60 * 60

LLMProvider = Literal["gemini", "cerebras", "anthropic"]


class Settings(BaseModel):
    google_vision_api_key: Optional[str] = None
    llm_provider: LLMProvider = "gemini"
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    cerebras_api_key: Optional[str] = None
    cerebras_model: str = DEFAULT_CEREBRAS_MODEL
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = DEFAULT_ANTHROPIC_MODEL
    wanikani_api_token: Optional[str] = None
    anki_connect_url: str = DEFAULT_ANKI_CONNECT_URL
    anki_deck_name: str = DEFAULT_ANKI_DECK_NAME
    anki_model_name: str = DEFAULT_ANKI_MODEL_NAME
    anki_timeout_seconds: float = Field(default=3.0, gt=0)
    correction_timeout_seconds: float = Field(default=30.0, gt=0)
    review_refresh_interval_seconds: float = Field(default=DEFAULT_REVIEW_REFRESH_INTERVAL_SECONDS, gt=0)
    dict_path: Path = Path("dict/index.json")
    state_path: Path = Path("yomu_state.json")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _get(name: str) -> Optional[str]:
            value = env.get(name)
            if value is None:
                return None
            value = value.strip()
            return value or None

        values: dict[str, object] = {
            "google_vision_api_key": _get("GOOGLE_VISION_API_KEY"),
            "gemini_api_key": _get("GEMINI_API_KEY"),
            "cerebras_api_key": _get("CEREBRAS_API_KEY"),
            "anthropic_api_key": _get("ANTHROPIC_API_KEY"),
            "wanikani_api_token": _get("WANIKANI_API_TOKEN"),
        }
        optional = {
            "llm_provider": "LLM_PROVIDER",
            "gemini_model": "GEMINI_MODEL",
            "cerebras_model": "CEREBRAS_MODEL",
            "anthropic_model": "ANTHROPIC_MODEL",
            "anki_connect_url": "ANKI_CONNECT_URL",
            "anki_deck_name": "ANKI_DECK_NAME",
            "anki_model_name": "ANKI_MODEL_NAME",
            "anki_timeout_seconds": "ANKI_TIMEOUT_SECONDS",
            "correction_timeout_seconds": "CORRECTION_TIMEOUT_SECONDS",
            "review_refresh_interval_seconds": "REVIEW_REFRESH_INTERVAL_SECONDS",
            "dict_path": "YOMU_DICT_PATH",
            "state_path": "YOMU_STATE_PATH",
        }
        for field_name, env_name in optional.items():
            value = _get(env_name)
            if value is not None:
                values[field_name] = value.lower() if field_name == "llm_provider" else value
        return cls.model_validate(values)


__all__ = ["Settings", "LLMProvider"]
