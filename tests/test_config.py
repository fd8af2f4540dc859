"""Tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from yomu.config import DEFAULT_ANKI_CONNECT_URL, DEFAULT_ANKI_DECK_NAME, Settings


def test_defaults():
    settings = Settings.from_env({})
    assert settings.llm_provider == "gemini"
    assert settings.anki_connect_url == DEFAULT_ANKI_CONNECT_URL
    assert settings.anki_deck_name == DEFAULT_ANKI_DECK_NAME
    assert settings.anki_timeout_seconds == 3.0
    assert settings.google_vision_api_key is None


def test_reads_environment():
    settings = Settings.from_env({
        "GOOGLE_VISION_API_KEY": "vision",
        "LLM_PROVIDER": "Anthropic",
        "ANTHROPIC_API_KEY": "sk",
        "ANKI_TIMEOUT_SECONDS": "1.5",
        "YOMU_DICT_PATH": "/data/index.json",
    })
    assert settings.google_vision_api_key == "vision"
    assert settings.llm_provider == "anthropic"
    assert settings.anthropic_api_key == "sk"
    assert settings.anki_timeout_seconds == 1.5
    assert settings.dict_path == Path("/data/index.json")


def test_blank_values_are_unset():
    settings = Settings.from_env({"WANIKANI_API_TOKEN": "  ", "ANKI_DECK_NAME": ""})
    assert settings.wanikani_api_token is None
    assert settings.anki_deck_name == DEFAULT_ANKI_DECK_NAME


def test_unknown_provider():
    with pytest.raises(ValidationError):
        Settings.from_env({"LLM_PROVIDER": "openai"})


def test_review_refresh_interval():
    assert Settings.from_env({}).review_refresh_interval_seconds == 3600
    settings = Settings.from_env({"REVIEW_REFRESH_INTERVAL_SECONDS": "120"})
    assert settings.review_refresh_interval_seconds == 120.0
    with pytest.raises(ValidationError):
        Settings.from_env({"REVIEW_REFRESH_INTERVAL_SECONDS": "0"})
