"""Example-sentence generation for flashcard payloads."""

from __future__ import annotations

import logging
from typing import Any, Dict

from .errors import MalformedResponseError
from .llm import LLMProvider, extract_json_object

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_TEXT = """You generate example sentences for Japanese Anki flashcards. The learner knows roughly 600-700 kanji and is targeting JLPT N2.

Respond ONLY with a JSON object, no markdown:
{
  "sentence_1": "sentence with Anki ruby furigana on kanji only",
  "sentence_2": "second sentence in a different context, also with Anki ruby furigana"
}

Both sentences MUST contain the target word. Use natural, native-sounding N2 Japanese and give the word
two clearly different contexts or grammatical roles.

Furigana goes on kanji only, written as 漢字[よみかた] right after the kanji:
毎日[まいにち]勉強[べんきょう]する"""


def _user_prompt(word: str, reading: str, meaning: str, context: str) -> str:
    prompt = f"Target word: {word} ({reading}): {meaning}\n\nBoth sentences MUST use 「{word}」."
    if context:
        prompt += f"\n\nContext from the page (for reference only, do not copy it):\n{context}"
    return prompt + "\n\nGenerate two N2-level example sentences."


class SentenceGenerator:
    def __init__(self, provider: LLMProvider) -> None:
        self._provider = provider

    def generate(self, word: str, reading: str, meaning: str, context: str = "") -> Dict[str, str]:
        content = self._provider.complete_json(SYSTEM_PROMPT_TEXT, _user_prompt(word, reading, meaning, context))
        data: Any = extract_json_object(content)
        if not isinstance(data, dict):
            raise MalformedResponseError("sentence response is not an object")
        sentences = {key: data.get(key) for key in ("sentence_1", "sentence_2")}
        if not all(isinstance(value, str) and value for value in sentences.values()):
            raise MalformedResponseError("sentence response is missing sentence_1 or sentence_2")
        logger.debug("Generated sentences for %r via %s", word, self._provider.name)
        return {key: str(value) for key, value in sentences.items()}


__all__ = ["SentenceGenerator"]
