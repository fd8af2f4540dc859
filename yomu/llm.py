"""JSON-returning LLM providers used for segmentation fixes and card sentences."""

from __future__ import annotations

import importlib
import json
import logging
import re
import threading
import time
from typing import Any, Dict, List, Protocol, Sequence, cast

import requests

from .config import Settings
from .errors import ConfigurationError, MalformedResponseError, TransientServiceError

MAX_RETRIES = 3
INITIAL_RETRY_DELAY_SECONDS = 3.0
MIN_SECONDS_BETWEEN_CALLS = 1.2  # Cerebras allows roughly 1 request per second

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

logger = logging.getLogger(__name__)


class _ChatCompletionsProtocol(Protocol):
    def create(
        self,
        *,
        model: str,
        messages: Sequence[Dict[str, str]],
        response_format: Dict[str, Any],
        temperature: float,
    ) -> Any:
        """Return a chat completion payload."""


class _ChatProtocol(Protocol):
    completions: _ChatCompletionsProtocol


class CerebrasClient(Protocol):
    chat: _ChatProtocol


class LLMProvider(Protocol):
    name: str

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        schema: Dict[str, Any] | None = None,
    ) -> str:
        """Return the raw text of a completion that should contain JSON."""
        ...


_cerebras_class: Any | None = None
_cerebras_attempted = False

_rate_limit_lock = threading.Lock()
_last_api_call: float = 0.0


def _load_cerebras_class() -> Any | None:
    global _cerebras_class, _cerebras_attempted
    if _cerebras_attempted:
        return _cerebras_class
    _cerebras_attempted = True
    try:
        module = importlib.import_module("cerebras.cloud.sdk")  # pyright: ignore[reportMissingImports]
    except ImportError:
        _cerebras_class = None
    else:
        _cerebras_class = cast(Any, getattr(module, "Cerebras", None))
    return _cerebras_class


def _respect_rate_limit() -> None:
    """Sleep just enough to respect Cerebras' per-second quota across threads."""

    if MIN_SECONDS_BETWEEN_CALLS <= 0:
        return

    global _last_api_call
    with _rate_limit_lock:
        now = time.monotonic()
        wait = _last_api_call + MIN_SECONDS_BETWEEN_CALLS - now
        if wait > 0:
            logger.debug("Throttling Cerebras call for %.2fs to respect rate limits", wait)
            time.sleep(wait)
            now = time.monotonic()
        _last_api_call = now


def _retry_after_seconds(error: Exception) -> float | None:
    """Extract a Retry-After hint if the SDK surfaced one."""

    header_value: str | None = None
    for source in (getattr(error, "response", None), error):
        headers = getattr(source, "headers", None)
        if headers and hasattr(headers, "get"):
            header_value = headers.get("Retry-After")
            if header_value:
                break
    if not header_value:
        return None
    try:
        return float(header_value)
    except (TypeError, ValueError):
        return None


def _status_code_from_error(error: Exception) -> int | None:
    response = getattr(error, "response", None)
    if response is not None and hasattr(response, "status_code"):
        return cast(int, getattr(response, "status_code", None))
    status = getattr(error, "status_code", None)
    return cast(int | None, status)


class _RetryingProvider:
    name = "base"

    def __init__(self, *, max_retries: int = MAX_RETRIES, retry_delay: float = INITIAL_RETRY_DELAY_SECONDS) -> None:
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay

    def _call(self, system_prompt: str, user_prompt: str, schema: Dict[str, Any] | None) -> str:
        raise NotImplementedError

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        schema: Dict[str, Any] | None = None,
    ) -> str:
        delay = float(self._retry_delay)
        last_exception: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                return self._call(system_prompt, user_prompt, schema)
            except ConfigurationError:
                raise
            except Exception as exc:  # noqa: BLE001 - SDK errors have no common base
                last_exception = exc
                if attempt + 1 >= self._max_retries:
                    break
                retry_hint = _retry_after_seconds(exc)
                if retry_hint is not None:
                    delay = max(retry_hint, delay)
                logger.warning(
                    "%s call failed (attempt %s/%s, status %s): %s. Retrying in %.1fs...",
                    self.name,
                    attempt + 1,
                    self._max_retries,
                    _status_code_from_error(exc) or "unknown",
                    exc,
                    delay,
                )
                time.sleep(delay)
                delay *= 1.5

        raise TransientServiceError(f"{self.name} call failed after retries") from last_exception


class CerebrasProvider(_RetryingProvider):
    name = "cerebras"

    def __init__(self, api_key: str | None, model: str, timeout: float, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        cerebras_class = _load_cerebras_class()
        if cerebras_class is None:
            raise ConfigurationError("cerebras-cloud-sdk is not installed; pick another LLM_PROVIDER")
        if not api_key:
            raise ConfigurationError("CEREBRAS_API_KEY is not set")
        self._client = cast(CerebrasClient, cerebras_class(api_key=api_key, timeout=timeout))
        self._model = model

    def _call(self, system_prompt: str, user_prompt: str, schema: Dict[str, Any] | None) -> str:
        _respect_rate_limit()
        response_format: Dict[str, Any] = {"type": "json_object"}
        if schema is not None:
            response_format = {"type": "json_schema", "json_schema": schema}
        response = self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format=response_format,
            temperature=0.2,
        )
        choices: Sequence[Any] = getattr(response, "choices", [])
        if not choices:
            raise TransientServiceError("Empty response from Cerebras API")
        message: Any = getattr(choices[0], "message", {})
        return str(getattr(message, "content", ""))


class GeminiProvider(_RetryingProvider):
    name = "gemini"

    def __init__(
        self,
        api_key: str | None,
        model: str,
        timeout: float,
        session: requests.Session | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._session = session or requests.Session()

    def _call(self, system_prompt: str, user_prompt: str, schema: Dict[str, Any] | None) -> str:
        response = self._session.post(
            GEMINI_URL.format(model=self._model),
            params={"key": self._api_key},
            json={
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                "generationConfig": {
                    "temperature": 0.2,
                    "responseMimeType": "application/json",
                },
            },
            timeout=self._timeout,
        )
        response.raise_for_status()
        body = response.json()
        candidates: List[Any] = body.get("candidates", [])
        if not candidates:
            raise TransientServiceError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        if not parts:
            raise TransientServiceError("Gemini candidate missing parts")
        return str(parts[0].get("text", ""))


class AnthropicProvider(_RetryingProvider):
    name = "anthropic"

    def __init__(
        self,
        api_key: str | None,
        model: str,
        timeout: float,
        session: requests.Session | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._session = session or requests.Session()

    def _call(self, system_prompt: str, user_prompt: str, schema: Dict[str, Any] | None) -> str:
        response = self._session.post(
            ANTHROPIC_URL,
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            json={
                "model": self._model,
                "max_tokens": 1024,
                "system": system_prompt,
                "messages": [{"role": "user", "content": user_prompt}],
            },
            timeout=self._timeout,
        )
        response.raise_for_status()
        content: List[Any] = response.json().get("content", [])
        if not content:
            raise TransientServiceError("Anthropic returned no content")
        return str(content[0].get("text", ""))


_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: str) -> Any:
    """Parse model output as JSON, falling back to the outermost ``{...}`` block."""
    cleaned = text.replace("```json", "").replace("```", "").strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        match = _JSON_BLOCK.search(cleaned)
        if match is None:
            raise MalformedResponseError("Model response contained no JSON object")
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise MalformedResponseError("Model response contained invalid JSON") from exc


def build_provider(settings: Settings, timeout: float | None = None, **kwargs: Any) -> LLMProvider:
    """Instantiate the configured provider; missing credentials raise ConfigurationError."""
    timeout = settings.correction_timeout_seconds if timeout is None else timeout
    provider = settings.llm_provider
    if provider == "cerebras":
        return CerebrasProvider(settings.cerebras_api_key, settings.cerebras_model, timeout, **kwargs)
    if provider == "anthropic":
        return AnthropicProvider(settings.anthropic_api_key, settings.anthropic_model, timeout, **kwargs)
    return GeminiProvider(settings.gemini_api_key, settings.gemini_model, timeout, **kwargs)


__all__ = [
    "LLMProvider",
    "CerebrasProvider",
    "GeminiProvider",
    "AnthropicProvider",
    "build_provider",
    "extract_json_object",
]
