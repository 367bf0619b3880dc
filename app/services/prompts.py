"""System prompts, JSON instruction blocks and score clamping."""

import math
from typing import Optional

from app.models.survey import QuestionType
from app.schemas.payloads import RankedConfig

OPEN_ENDED_SYSTEM_PROMPT = (
    "You are a research assistant. Answer questions accurately with citations."
)

RANKED_SYSTEM_PROMPT = (
    "You are a research evaluator. You will be asked to rate something on a numeric scale. "
    "Respond ONLY with valid JSON in the exact format specified. "
    "Do not include any text outside the JSON."
)

OPEN_ENDED_JSON_BLOCK = """

---
You MUST respond with ONLY valid JSON and no other text.

JSON schema:
- answer_text: string (your long-form answer)
- citations: array of objects with:
  - url: string
  - title: string (optional)
  - snippet: string (optional)
- notes: string (optional)

If you have no citations, set citations to an empty array.

Do not wrap the JSON in markdown code fences.
---"""


def build_system_prompt(question_type: QuestionType) -> str:
    if question_type == QuestionType.RANKED:
        return RANKED_SYSTEM_PROMPT
    return OPEN_ENDED_SYSTEM_PROMPT


def build_ranked_json_block(config: RankedConfig) -> str:
    """Build the instruction block appended to ranked prompts."""
    if config.include_reasoning:
        schema = (
            "{\n"
            f'  "score": <integer from {config.scale_min} to {config.scale_max}>,\n'
            '  "reasoning": "<brief explanation for your score>"\n'
            "}"
        )
    else:
        schema = (
            "{\n"
            f'  "score": <integer from {config.scale_min} to {config.scale_max}>\n'
            "}"
        )

    return (
        "\n\n---\n"
        f"Rate your response on a scale from {config.scale_min} to {config.scale_max}.\n\n"
        f"Respond with ONLY valid JSON matching this schema:\n{schema}\n\n"
        "Do not wrap the JSON in markdown code fences.\n---"
    )


def build_user_prompt(
    rendered_prompt: str,
    question_type: QuestionType,
    ranked_config: Optional[RankedConfig] = None,
) -> str:
    """Rendered prompt plus the JSON instruction block for its question type."""
    if question_type == QuestionType.RANKED:
        return rendered_prompt + build_ranked_json_block(ranked_config or RankedConfig())
    return rendered_prompt + OPEN_ENDED_JSON_BLOCK


def clamp_score(score: float, scale_min: int, scale_max: int) -> int:
    """Round half-up to the nearest integer and saturate at the scale bounds."""
    rounded = math.floor(score + 0.5)
    return max(scale_min, min(scale_max, rounded))
