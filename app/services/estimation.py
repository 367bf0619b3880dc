"""Pre-run token and cost estimation."""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from app.config import settings
from app.models.survey import ModelTarget, Question
from app.schemas.run import ModelEstimate, RunEstimate

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal]

TOKENS_PER_PRICE_UNIT = Decimal(1_000_000)


def compute_cost(
    input_tokens: int,
    output_tokens: int,
    input_price_per_million: Number,
    output_price_per_million: Number,
) -> Decimal:
    """Cost in USD for the given usage at per-million-token prices."""
    input_cost = Decimal(input_tokens) * Decimal(str(input_price_per_million)) / TOKENS_PER_PRICE_UNIT
    output_cost = Decimal(output_tokens) * Decimal(str(output_price_per_million)) / TOKENS_PER_PRICE_UNIT
    return input_cost + output_cost


def estimate_run(
    question_count: int,
    model_targets: Iterable[ModelTarget],
    avg_input_tokens: Optional[int] = None,
    avg_output_tokens: Optional[int] = None,
) -> RunEstimate:
    """
    Project token usage and cost for a run without executing anything.

    Every model gets one job per question; token counts use fixed
    per-question averages.
    """
    if avg_input_tokens is None:
        avg_input_tokens = settings.AVG_INPUT_TOKENS_PER_QUESTION
    if avg_output_tokens is None:
        avg_output_tokens = settings.AVG_OUTPUT_TOKENS_PER_QUESTION

    per_model: List[ModelEstimate] = []
    total_input = 0
    total_output = 0
    total_cost = Decimal(0)

    for target in model_targets:
        job_count = question_count
        input_tokens = job_count * avg_input_tokens
        output_tokens = job_count * avg_output_tokens
        cost = compute_cost(
            input_tokens,
            output_tokens,
            target.input_cost_per_million,
            target.output_cost_per_million,
        )

        per_model.append(
            ModelEstimate(
                model_target_id=target.id,
                model_name=target.model_name,
                provider=target.provider,
                job_count=job_count,
                estimated_input_tokens=input_tokens,
                estimated_output_tokens=output_tokens,
                estimated_cost_usd=float(cost),
            )
        )
        total_input += input_tokens
        total_output += output_tokens
        total_cost += cost

    return RunEstimate(
        total_questions=question_count,
        total_models=len(per_model),
        total_jobs=question_count * len(per_model),
        estimated_input_tokens=total_input,
        estimated_output_tokens=total_output,
        estimated_total_tokens=total_input + total_output,
        estimated_cost_usd=float(total_cost),
        per_model=per_model,
    )


def estimate_survey_run(db: Session, survey_id, model_targets: List[ModelTarget]) -> RunEstimate:
    """Estimate a run for a stored survey."""
    question_count = db.query(Question).filter(Question.survey_id == survey_id).count()
    estimate = estimate_run(question_count, model_targets)
    logger.info(
        f"Estimated survey {survey_id}: {estimate.total_jobs} jobs, "
        f"{estimate.estimated_total_tokens} tokens, ${estimate.estimated_cost_usd:.4f}"
    )
    return estimate
