"""Tests for sentiment and entity heuristics."""

import pytest

from app.services.analysis import (
    analyze_sentiment,
    build_flags,
    extract_brand_mentions,
    extract_entities,
    extract_institution_mentions,
)


def test_sentiment_bounds():
    assert analyze_sentiment("An excellent, reliable product.") == 1.0
    assert analyze_sentiment("A terrible and broken product.") == -1.0


def test_sentiment_mixed():
    assert analyze_sentiment("Good but terrible and awful") == pytest.approx(-1 / 3)


def test_sentiment_neutral_text_is_zero():
    assert analyze_sentiment("The meeting is on Tuesday.") == 0.0
    assert analyze_sentiment("") == 0.0


def test_extract_entities():
    entities = extract_entities("Dr. Jane Smith said Acme Corp opened an office in Berlin.")

    assert entities["people"] == ["Jane Smith"]
    assert entities["places"] == ["Berlin"]
    assert entities["organizations"] == ["Acme Corp"]


def test_place_article_is_stripped():
    entities = extract_entities("Sales grew across the Netherlands last year.")

    assert entities["places"] == ["Netherlands"]


def test_extract_brand_mentions():
    brands = extract_brand_mentions("We compared PlayStation, OpenAI, iPhone and IBM through the API.")

    assert brands == ["PlayStation", "OpenAI", "iPhone", "IBM"]


def test_extract_institution_mentions():
    mentions = extract_institution_mentions(
        "Researchers at the University of Oxford and the Mayo Foundation agree."
    )

    assert mentions == ["University of Oxford", "Mayo Foundation"]


def test_short_answer_flag():
    assert build_flags("Too short", 0.0) == ["short_answer"]


def test_extreme_sentiment_flag():
    text = "This is a long enough answer to avoid the short flag."

    assert build_flags(text, -0.9) == ["extreme_sentiment"]
    assert build_flags(text, 0.8) == []
