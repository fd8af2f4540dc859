"""Client side of the OCR segmentation-correction protocol.

OCR engines tend to split Japanese words at kana boundaries (``食べ`` / ``て`` /
``い`` / ``る``) and occasionally misread a glyph. An LLM collaborator receives
the ordered token list and answers with

* ``mergedGroups``: lists of token indices that form one logical word, and
* ``correctedText``: a sparse ``{"index": "replacement"}`` mapping.

The answer is untrusted. ``parse_correction_response`` rejects anything that
does not fit the contract before ``apply_correction`` touches session state.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, NamedTuple, Sequence, Set

from .errors import MalformedResponseError
from .llm import LLMProvider, extract_json_object
from .types import Annotation, Layout, MergeGroup, MergeMap

logger = logging.getLogger(__name__)

_INDEX_KEY = re.compile(r"^[0-9]+$")

CORRECTION_SCHEMA: Dict[str, Any] = {
    "name": "segmentation_fix",
    "strict": False,
    "schema": {
        "type": "object",
        "properties": {
            "mergedGroups": {
                "type": "array",
                "items": {"type": "array", "items": {"type": "integer"}},
            },
            "correctedText": {
                "type": "object",
                "additionalProperties": {"type": "string"},
            },
        },
        "required": ["mergedGroups", "correctedText"],
    },
}

SYSTEM_PROMPT_TEXT = (
    "You repair OCR output of Japanese text. The OCR engine often splits one word into several "
    "tokens (for example 食べ / て / い / る) and sometimes misreads a character. Given the ordered "
    "tokens, return JSON only: mergedGroups lists runs of adjacent token indices that belong to one "
    "word, in ascending order, each with at least two indices and no index used twice; correctedText "
    "maps a token index (as a string) to its corrected text. Leave correct tokens out of both."
)


class CorrectionResponse(NamedTuple):
    merged_groups: List[List[int]]
    corrected_text: Dict[int, str]


class CorrectionResult(NamedTuple):
    annotations: List[Annotation]
    merge_map: MergeMap
    groups: List[MergeGroup]


def build_correction_request(annotations: Sequence[Annotation], layout: Layout) -> Dict[str, Any]:
    return {
        "tokens": [{"index": a["index"], "text": a["text"]} for a in annotations],
        "layout": layout,
    }


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_correction_response(raw: Any, token_count: int) -> CorrectionResponse:
    """Validate a correction payload against ``token_count`` tokens."""
    if not isinstance(raw, dict):
        raise MalformedResponseError("correction response is not an object")

    groups_raw = raw.get("mergedGroups")
    if groups_raw is None:
        groups_raw = []
    if not isinstance(groups_raw, list):
        raise MalformedResponseError("mergedGroups is not a list")

    claimed: Set[int] = set()
    merged_groups: List[List[int]] = []
    for group in groups_raw:
        if not isinstance(group, list):
            raise MalformedResponseError("merge group is not a list")
        for member in group:
            if not _is_index(member):
                raise MalformedResponseError(f"merge group member {member!r} is not an integer")
            if not 0 <= member < token_count:
                raise MalformedResponseError(f"merge group member {member} is out of range")
        members = sorted(set(group))
        if len(members) < 2:
            raise MalformedResponseError("merge group has fewer than two members")
        overlap = claimed.intersection(members)
        if overlap:
            raise MalformedResponseError(f"indices {sorted(overlap)} claimed by more than one group")
        claimed.update(members)
        merged_groups.append(members)

    corrected_raw = raw.get("correctedText")
    if corrected_raw is None:
        corrected_raw = {}
    if not isinstance(corrected_raw, dict):
        raise MalformedResponseError("correctedText is not an object")

    corrected_text: Dict[int, str] = {}
    for key, value in corrected_raw.items():
        if not isinstance(key, str) or not _INDEX_KEY.match(key):
            raise MalformedResponseError(f"correctedText key {key!r} is not an integer index")
        index = int(key)
        if index >= token_count:
            raise MalformedResponseError(f"correctedText index {index} is out of range")
        if not isinstance(value, str):
            raise MalformedResponseError(f"correctedText value for {index} is not a string")
        corrected_text[index] = value

    return CorrectionResponse(merged_groups, corrected_text)


def apply_correction(annotations: Sequence[Annotation], response: CorrectionResponse) -> CorrectionResult:
    """Return corrected annotations and the merge map; the input is left untouched."""
    by_index = {a["index"]: a for a in annotations}
    grouped = {index for group in response.merged_groups for index in group}

    corrected: List[Annotation] = []
    for annotation in annotations:
        index = annotation["index"]
        replacement = response.corrected_text.get(index)
        if replacement is not None and index not in grouped:
            corrected.append({"index": index, "text": replacement, "poly": annotation["poly"]})
        else:
            corrected.append({"index": index, "text": annotation["text"], "poly": annotation["poly"]})

    merge_map: MergeMap = {}
    groups: List[MergeGroup] = []
    for group_id, members in enumerate(response.merged_groups):
        combined_text = "".join(
            response.corrected_text.get(index, by_index[index]["text"] if index in by_index else "")
            for index in members
        )
        groups.append({"id": group_id, "member_indices": list(members), "combined_text": combined_text})
        for index in members:
            merge_map[index] = {"group_id": group_id, "combined_text": combined_text}

    return CorrectionResult(corrected, merge_map, groups)


class SegmentationCorrector:
    def __init__(self, provider: LLMProvider) -> None:
        self._provider = provider

    def correct(self, annotations: Sequence[Annotation], layout: Layout) -> CorrectionResponse:
        """Ask the collaborator for merges and corrections.

        Raises ``TransientServiceError`` when the provider cannot be reached and
        ``MalformedResponseError`` when its answer breaks the contract.
        """
        request = build_correction_request(annotations, layout)
        direction = "vertical, right-to-left columns" if layout == "vertical-rl" else "horizontal rows"
        user_prompt = (
            f"Page layout: {direction}.\n"
            "Tokens in OCR order:\n" + json.dumps(request, ensure_ascii=False)
        )
        content = self._provider.complete_json(SYSTEM_PROMPT_TEXT, user_prompt, schema=CORRECTION_SCHEMA)
        response = parse_correction_response(extract_json_object(content), len(annotations))
        logger.info(
            "Segmentation fix via %s: %s merge groups, %s corrections",
            self._provider.name,
            len(response.merged_groups),
            len(response.corrected_text),
        )
        return response


__all__ = [
    "CorrectionResponse",
    "CorrectionResult",
    "SegmentationCorrector",
    "build_correction_request",
    "parse_correction_response",
    "apply_correction",
]
