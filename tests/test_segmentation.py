"""Tests for the segmentation-correction contract."""

import pytest

from yomu.errors import MalformedResponseError, TransientServiceError
from yomu.segmentation import (
    SegmentationCorrector,
    apply_correction,
    build_correction_request,
    parse_correction_response,
)

from conftest import FakeProvider, make_annotation


@pytest.fixture
def tokens():
    return [
        make_annotation(0, "私", 0, 0),
        make_annotation(1, "は", 20, 0),
        make_annotation(2, "食べ", 40, 0),
        make_annotation(3, "る", 60, 0),
    ]


def test_request_lists_tokens_in_order(tokens):
    request = build_correction_request(tokens, "horizontal-ltr")
    assert request["layout"] == "horizontal-ltr"
    assert request["tokens"] == [
        {"index": 0, "text": "私"},
        {"index": 1, "text": "は"},
        {"index": 2, "text": "食べ"},
        {"index": 3, "text": "る"},
    ]


class TestParse:
    def test_valid_response(self):
        parsed = parse_correction_response({"mergedGroups": [[3, 2]], "correctedText": {"1": "が"}}, 4)
        assert parsed.merged_groups == [[2, 3]]
        assert parsed.corrected_text == {1: "が"}

    def test_missing_fields_are_empty(self):
        parsed = parse_correction_response({}, 4)
        assert parsed.merged_groups == []
        assert parsed.corrected_text == {}

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"mergedGroups": "0,1"},
            {"mergedGroups": [[0, 9]]},
            {"mergedGroups": [[-1, 0]]},
            {"mergedGroups": [[0, "1"]]},
            {"mergedGroups": [[True, 1]]},
            {"mergedGroups": [[2]]},
            {"mergedGroups": [[2, 2]]},
            {"mergedGroups": [[0, 1], [1, 2]]},
            {"correctedText": ["x"]},
            {"correctedText": {"a": "x"}},
            {"correctedText": {"-1": "x"}},
            {"correctedText": {"4": "x"}},
            {"correctedText": {"0": 5}},
        ],
    )
    def test_rejects_contract_violations(self, payload):
        with pytest.raises(MalformedResponseError):
            parse_correction_response(payload, 4)


class TestApply:
    def test_merge_group_over_four_tokens(self, tokens):
        response = parse_correction_response({"mergedGroups": [[2, 3]], "correctedText": {}}, 4)
        result = apply_correction(tokens, response)
        assert result.merge_map == {
            2: {"group_id": 0, "combined_text": "食べる"},
            3: {"group_id": 0, "combined_text": "食べる"},
        }
        assert 0 not in result.merge_map and 1 not in result.merge_map
        assert result.groups == [{"id": 0, "member_indices": [2, 3], "combined_text": "食べる"}]

    def test_corrections_skip_grouped_indices(self, tokens):
        response = parse_correction_response(
            {"mergedGroups": [[2, 3]], "correctedText": {"1": "が", "2": "喰べ"}}, 4
        )
        result = apply_correction(tokens, response)
        assert [a["text"] for a in result.annotations] == ["私", "が", "食べ", "る"]
        assert result.groups[0]["combined_text"] == "喰べる"

    def test_input_not_mutated(self, tokens):
        response = parse_correction_response({"mergedGroups": [], "correctedText": {"0": "僕"}}, 4)
        apply_correction(tokens, response)
        assert tokens[0]["text"] == "私"

    def test_reapplying_yields_same_groups(self, tokens):
        response = parse_correction_response(
            {"mergedGroups": [[2, 3]], "correctedText": {"0": "僕", "3": "るる"}}, 4
        )
        first = apply_correction(tokens, response)
        second = apply_correction(first.annotations, response)
        assert second.groups == first.groups
        assert second.merge_map == first.merge_map

    def test_every_group_has_two_members(self, tokens):
        response = parse_correction_response({"mergedGroups": [[0, 1], [2, 3]]}, 4)
        result = apply_correction(tokens, response)
        assert [g["id"] for g in result.groups] == [0, 1]
        assert all(len(g["member_indices"]) >= 2 for g in result.groups)


class TestCorrector:
    def test_round_trip_through_provider(self, tokens):
        provider = FakeProvider("```json\n{\"mergedGroups\": [[2, 3]], \"correctedText\": {}}\n```")
        response = SegmentationCorrector(provider).correct(tokens, "horizontal-ltr")
        assert response.merged_groups == [[2, 3]]
        assert "食べ" in provider.prompts[0]

    def test_non_json_reply(self, tokens):
        with pytest.raises(MalformedResponseError):
            SegmentationCorrector(FakeProvider("no idea")).correct(tokens, "vertical-rl")

    def test_provider_failure_propagates(self, tokens):
        provider = FakeProvider(error=TransientServiceError("down"))
        with pytest.raises(TransientServiceError):
            SegmentationCorrector(provider).correct(tokens, "horizontal-ltr")
