"""Repair and validate structured JSON replies from language models."""

import json
import re
from typing import Any, Dict, NamedTuple, Optional, Type

from pydantic import BaseModel, ValidationError

FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```")
TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")

SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
}

NO_JSON_OBJECT_ERROR = "No JSON object found in input"


class RepairResult(NamedTuple):
    parsed: Optional[Dict[str, Any]]
    error: Optional[str] = None


def repair_and_parse(raw: str, schema: Type[BaseModel]) -> RepairResult:
    """
    Parse `raw` into a payload validated by `schema`, repairing it if needed.

    Repairs are applied only when the strict parse fails: strip Markdown
    fences, slice from the first `{` to the last `}`, normalise typographic
    quotes, drop trailing commas, then parse and validate again.

    Args:
        raw: Reply text from the provider
        schema: Pydantic model the payload must satisfy

    Returns:
        RepairResult with the validated payload as a dict, or None and an error
    """
    direct = _parse_and_validate(raw, schema)
    if direct.parsed is not None:
        return direct

    text = strip_markdown_fences(raw)
    text = extract_json_object(text)
    if not text:
        return RepairResult(parsed=None, error=NO_JSON_OBJECT_ERROR)

    text = normalize_smart_quotes(text)
    text = remove_trailing_commas(text)

    repaired = _parse_and_validate(text, schema)
    if repaired.parsed is not None:
        return repaired
    return RepairResult(parsed=None, error=repaired.error or "Failed to parse and validate JSON")


def _parse_and_validate(text: str, schema: Type[BaseModel]) -> RepairResult:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        return RepairResult(parsed=None, error=f"JSON parse error: {e}")

    try:
        model = schema.model_validate(data)
    except ValidationError as e:
        issues = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        return RepairResult(parsed=None, error=f"Validation error: {issues}")

    return RepairResult(parsed=model.model_dump(exclude_none=True))


def strip_markdown_fences(text: str) -> str:
    match = FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text


def extract_json_object(text: str) -> str:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return ""
    return text[first:last + 1]


def normalize_smart_quotes(text: str) -> str:
    for smart, plain in SMART_QUOTES.items():
        text = text.replace(smart, plain)
    return text


def remove_trailing_commas(text: str) -> str:
    return TRAILING_COMMA_PATTERN.sub(r"\1", text)
