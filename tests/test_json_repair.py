"""Tests for the reply repair and validation pipeline."""

from app.schemas.answers import OpenEndedAnswer, RankedAnswer
from app.services.json_repair import (
    NO_JSON_OBJECT_ERROR,
    extract_json_object,
    remove_trailing_commas,
    repair_and_parse,
    strip_markdown_fences,
)

CLEAN = '{"answer_text": "Paris", "citations": [{"url": "https://example.com"}]}'


def test_clean_json_parses_directly():
    result = repair_and_parse(CLEAN, OpenEndedAnswer)

    assert result.error is None
    assert result.parsed == {"answer_text": "Paris", "citations": [{"url": "https://example.com"}]}


def test_fenced_smart_quoted_trailing_comma_matches_clean():
    """Test that a damaged payload repairs to the clean result."""
    damaged = (
        "Here you go:\n```json\n"
        "{“answer_text”: “Paris”, "
        "“citations”: [{“url”: “https://example.com”},],}\n"
        "```\nHope that helps."
    )

    assert repair_and_parse(damaged, OpenEndedAnswer) == repair_and_parse(CLEAN, OpenEndedAnswer)


def test_no_braces_fails_with_explicit_error():
    result = repair_and_parse("I cannot answer that.", OpenEndedAnswer)

    assert result.parsed is None
    assert result.error == NO_JSON_OBJECT_ERROR


def test_citations_must_be_an_array():
    result = repair_and_parse('{"answer_text": "x", "citations": "none"}', OpenEndedAnswer)

    assert result.parsed is None
    assert result.error.startswith("Validation error")
    assert "citations" in result.error


def test_missing_required_field():
    result = repair_and_parse('{"citations": []}', OpenEndedAnswer)

    assert result.parsed is None
    assert "answer_text" in result.error


def test_unrepairable_json_reports_parse_error():
    result = repair_and_parse('{"score": 5 "reasoning": "x"}', RankedAnswer)

    assert result.parsed is None
    assert result.error.startswith("JSON parse error")


def test_ranked_answer_with_prose_around_it():
    result = repair_and_parse('My rating: {"score": 8, "reasoning": "Good"} thanks', RankedAnswer)

    assert result.parsed == {"score": 8.0, "reasoning": "Good"}


def test_ranked_answer_without_reasoning():
    result = repair_and_parse('{"score": 3}', RankedAnswer)

    assert result.parsed == {"score": 3.0}


def test_ranked_score_given_as_string_is_rejected():
    result = repair_and_parse('{"score": "7", "reasoning": "ok"}', RankedAnswer)

    assert result.parsed is None
    assert "score" in result.error


def test_ranked_score_must_be_a_number():
    assert repair_and_parse('{"score": true}', RankedAnswer).parsed is None
    assert repair_and_parse('{"score": NaN}', RankedAnswer).parsed is None
    assert repair_and_parse('{"score": 7.5}', RankedAnswer).parsed == {"score": 7.5}


def test_strip_markdown_fences_without_language():
    assert strip_markdown_fences('```\n{"a": 1}\n```') == '{"a": 1}'


def test_extract_json_object_requires_both_braces():
    assert extract_json_object("} backwards {") == ""
    assert extract_json_object('x {"a": {"b": 1}} y') == '{"a": {"b": 1}}'


def test_remove_trailing_commas():
    assert remove_trailing_commas('{"a": [1, 2, ], }') == '{"a": [1, 2]}'
