"""Lexical sentiment and heuristic entity extraction for response text."""

import re
from typing import Dict, List

from app.config import settings

POSITIVE_WORDS = frozenset({
    "good", "great", "excellent", "wonderful", "fantastic", "amazing", "positive",
    "helpful", "beneficial", "effective", "best", "better", "love", "loved",
    "enjoy", "enjoyed", "impressive", "outstanding", "remarkable", "superior",
    "perfect", "brilliant", "exceptional", "magnificent", "superb", "delightful",
    "favorable", "recommend", "recommended", "pleased", "satisfying", "satisfied",
    "reliable", "efficient", "innovative", "strong", "useful", "valuable",
    "successful", "improved",
})

NEGATIVE_WORDS = frozenset({
    "bad", "terrible", "awful", "horrible", "negative", "harmful", "ineffective",
    "poor", "worst", "worse", "hate", "hated", "disappointing", "disappointed",
    "frustrating", "frustrated", "inadequate", "inferior", "problematic",
    "unreliable", "useless", "flawed", "defective", "broken", "failed", "failure",
    "dangerous", "risky", "weak", "lacking", "mediocre", "subpar",
    "unsatisfactory", "unacceptable", "dreadful", "miserable", "annoying",
    "painful", "damaging", "detrimental",
})

COMMON_ABBREVIATIONS = frozenset({
    "AI", "API", "URL", "HTTP", "HTTPS", "HTML", "CSS", "JSON", "XML", "SQL",
    "LLM", "NLP", "ML", "US", "UK", "EU", "IT", "OR", "AND", "THE", "NOT",
    "FOR", "BUT", "CEO", "CTO", "PDF", "FAQ", "USD",
})

WORD_PATTERN = re.compile(r"\b[a-z]+\b")

PASCAL_CASE_PATTERN = re.compile(r"\b[A-Z][a-z]+(?:[A-Z][a-z]+)+\b")
MIXED_CAPS_PATTERN = re.compile(r"\b[A-Za-z]*[a-z][A-Z][A-Za-z]*\b")
ALL_CAPS_PATTERN = re.compile(r"\b[A-Z]{2,}\b")

CAPITALISED_PHRASE = r"[A-Z][a-zA-Z&'.-]*(?:\s+(?:of|and|for|the|&)?\s*[A-Z][a-zA-Z&'.-]*){0,4}"

PERSON_PATTERN = re.compile(
    r"\b(?:Mr|Mrs|Ms|Dr|Prof|Sir|Dame|President|Senator|CEO|Professor)\.?\s+"
    r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,2})"
)
PLACE_PATTERN = re.compile(
    r"\b(?:in|at|from|near|across|throughout)\s+((?:the\s+)?[A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,2})"
)
ORGANIZATION_PATTERN = re.compile(
    r"\b((?:[A-Z][a-zA-Z&]*\s+){0,4}[A-Z][a-zA-Z&]*)\s+"
    r"(Inc|Corp|Corporation|LLC|Ltd|GmbH|PLC|Group|Holdings|Company|Co)\b\.?"
)
MULTIWORD_CAPITALISED = re.compile(r"\b(?:[A-Z][a-z]+\s+){1,5}[A-Z][a-z]+\b")

INSTITUTION_PATTERNS = [
    re.compile(r"\b(?:University|Institute|College|School) of (?:the )?[A-Z][a-zA-Z]*(?:\s+[A-Z][a-zA-Z]*)*"),
    re.compile(
        r"\b(?:[A-Z][a-zA-Z]*\s+){1,4}"
        r"(?:University|Institute|College|Academy|Foundation|Corporation|Association|Hospital|Laboratory)\b"
    ),
]

SENTENCE_STARTERS = frozenset({"The", "A", "An", "In", "At", "From", "This", "That", "These", "Those"})


def analyze_sentiment(text: str) -> float:
    """
    Word-list sentiment score in [-1, 1].

    (positive - negative) / (positive + negative) over sentiment-bearing
    tokens; 0 when there are none.
    """
    words = WORD_PATTERN.findall(text.lower())
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    total = positive + negative
    if total == 0:
        return 0.0
    return (positive - negative) / total


def extract_entities(text: str) -> Dict[str, List[str]]:
    """People, places and organisations found by pattern matching."""
    people = _dedupe(m.group(1) for m in PERSON_PATTERN.finditer(text))
    places = _dedupe(
        _strip_article(m.group(1))
        for m in PLACE_PATTERN.finditer(text)
        if _strip_article(m.group(1)) not in SENTENCE_STARTERS
    )

    organizations = _dedupe(f"{m.group(1)} {m.group(2)}" for m in ORGANIZATION_PATTERN.finditer(text))
    if not organizations:
        organizations = _dedupe(
            phrase
            for phrase in (_trim_starter(m.group(0)) for m in MULTIWORD_CAPITALISED.finditer(text))
            if len(phrase.split()) >= 2 and phrase not in people and phrase not in places
        )

    return {"people": people, "places": places, "organizations": organizations}


def extract_brand_mentions(text: str) -> List[str]:
    """PascalCase, mixed-caps and ALL-CAPS tokens that look like product or company names."""
    brands: List[str] = []
    for match in PASCAL_CASE_PATTERN.finditer(text):
        brands.append(match.group(0))
    for match in MIXED_CAPS_PATTERN.finditer(text):
        if len(match.group(0)) >= 3:
            brands.append(match.group(0))
    for match in ALL_CAPS_PATTERN.finditer(text):
        if match.group(0) not in COMMON_ABBREVIATIONS:
            brands.append(match.group(0))
    return _dedupe(brands)


def extract_institution_mentions(text: str) -> List[str]:
    """Universities, institutes, foundations and similar named bodies."""
    mentions: List[str] = []
    for pattern in INSTITUTION_PATTERNS:
        for match in pattern.finditer(text):
            mention = _trim_starter(match.group(0).strip())
            if len(mention) > 3:
                mentions.append(mention)
    return _dedupe(mentions)


def build_flags(text: str, sentiment_score: float) -> List[str]:
    flags = []
    if len(text) < settings.SHORT_ANSWER_THRESHOLD:
        flags.append("short_answer")
    if abs(sentiment_score) > settings.EXTREME_SENTIMENT_THRESHOLD:
        flags.append("extreme_sentiment")
    return flags


def _strip_article(phrase: str) -> str:
    return phrase[4:] if phrase.startswith("the ") else phrase


def _trim_starter(phrase: str) -> str:
    words = phrase.split()
    while len(words) > 1 and words[0] in SENTENCE_STARTERS:
        words = words[1:]
    return " ".join(words)


def _dedupe(items) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        item = item.strip()
        if item and item not in seen:
            seen[item] = None
    return list(seen)
