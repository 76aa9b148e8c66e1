import pytest

from retriva.domain.report_schema import ItemCategory
from retriva.services import json_contract as jc


def test_clean_json_strips_fences_and_prose():
    raw = 'Sure! Here you go:\n```json\n{"confidence": 80, "explanation": "same"}\n```\nHope it helps.'
    assert jc.parse_json(raw) == {"confidence": 80, "explanation": "same"}


def test_clean_json_bare_array():
    assert jc.parse_json('result: [{"id": "a"}] done') == [{"id": "a"}]


def test_parse_json_failure_is_empty():
    assert jc.parse_json("not json at all") == {}
    assert jc.parse_json("") == {}
    assert jc.parse_json('"just a string"') == {}


@pytest.mark.parametrize("value,expected", [
    (85, 85),
    ("85", 85),
    ("85%", 85),
    (0.85, 85),
    ("0.85", 85),
    (1.0, 100),
    (1, 1),
    ("0.5%", 1),
    (42.5, 43),
    (150, 100),
    (-5, 0),
])
def test_normalize_confidence(value, expected):
    assert jc.normalize_confidence(value) == expected


@pytest.mark.parametrize("value", [None, "high", True, float("nan"), {"v": 1}])
def test_normalize_confidence_default(value):
    assert jc.normalize_confidence(value) == 50
    assert jc.normalize_confidence(value, default=0) == 0


def test_normalize_confidence_idempotent():
    for value in [0.85, "85%", 7, 0.004, 99.6, "1", 300]:
        once = jc.normalize_confidence(value)
        assert jc.normalize_confidence(once) == once


def test_coerce_comparison_defaults_and_clamps():
    result = jc.coerce_comparison({"confidence": "120", "similarities": ["a", "", "a", 3], "differences": "x"})
    assert result.confidence == 100
    assert result.explanation == ""
    assert result.similarities == ["a", "3"]
    assert result.differences == []
    assert result.is_estimate is False
    assert jc.coerce_comparison({}) is None
    assert jc.coerce_comparison([1, 2]) is None


def test_coerce_match_candidates_filters_unknown_and_duplicate_ids():
    parsed = {"matches": [
        {"id": "f1", "confidence": 0.9, "reason": "same brand"},
        {"id": "ghost", "confidence": 95},
        {"id": "f1", "confidence": 10},
        {"id": "f2"},
        "junk",
    ]}
    out = jc.coerce_match_candidates(parsed, ["f1", "f2"])
    assert [(m.id, m.confidence, m.reason) for m in out] == [("f1", 90, "same brand"), ("f2", 0, None)]


def test_coerce_match_candidates_without_array():
    assert jc.coerce_match_candidates({"answer": "none"}, ["f1"]) is None
    assert jc.coerce_match_candidates({"matches": []}, ["f1"]) == []


def test_coerce_visual_details():
    details = jc.coerce_visual_details({
        "title": "Blue Hydroflask",
        "category": "stationary",
        "tags": ["blue", "bottle", "metal", "dented", "sticker", "extra"],
        "condition": "used",
    })
    assert details.title == "Blue Hydroflask"
    assert details.category == ItemCategory.STATIONERY
    assert len(details.tags) == 5
    assert details.brand == "Unknown"
    assert details.condition == "Used"
    assert jc.coerce_visual_details({}) is None


def test_pinned_comparison():
    result = jc.pinned_comparison()
    assert result.confidence == 99
    assert result.is_estimate is False
