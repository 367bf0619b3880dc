"""Deterministic expansion of a run into execute-question jobs."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.job import JobType
from app.models.survey import Question, QuestionMode, QuestionType, Variable
from app.schemas.payloads import ExecuteQuestionPayload, RankedConfig
from app.services.templating import substitute_variables

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocatedJob:
    """An execute-question job ready to be written to the job store."""

    model_target_id: UUID
    question_id: UUID
    thread_key: str
    idempotency_key: str
    payload: Dict[str, Any] = field(compare=False)
    type: JobType = JobType.EXECUTE_QUESTION


def build_idempotency_key(run_id, model_target_id, question_id) -> str:
    return f"{run_id}:{model_target_id}:{question_id}"


def build_thread_key(run_id, model_target_id, question) -> str:
    """
    Conversation slot for a question.

    Stateless questions each own a slot; threaded questions for the same model
    share one slot per thread group (falling back to the question id).
    """
    if question.mode == QuestionMode.THREADED:
        group = question.thread_key or str(question.id)
        return f"{run_id}:{model_target_id}:thread:{group}"
    return f"{run_id}:{model_target_id}:question:{question.id}"


def merge_variables(
    variables: Sequence[Variable],
    overrides: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Survey defaults overridden by run-specific values."""
    merged: Dict[str, str] = {}
    for variable in variables:
        if variable.default_value is not None:
            merged[variable.key] = variable.default_value
    if overrides:
        merged.update(overrides)
    return merged


def allocate_jobs(
    run_id,
    model_target_ids: Sequence,
    questions: Sequence[Question],
    variable_map: Mapping[str, str],
) -> List[AllocatedJob]:
    """
    Expand models x questions into execute-question jobs.

    Models are the outer loop and questions (by display order) the inner
    loop, so identical inputs always yield the same keys in the same order.
    Unresolved placeholders are passed through literally.
    """
    ordered_questions = sorted(questions, key=lambda q: q.order or 0)
    jobs: List[AllocatedJob] = []

    for model_target_id in model_target_ids:
        for question in ordered_questions:
            rendered = substitute_variables(question.prompt_template, variable_map)
            thread_key = build_thread_key(run_id, model_target_id, question)

            ranked_config = None
            if question.type == QuestionType.RANKED:
                ranked_config = RankedConfig.model_validate(question.config or {})

            payload = ExecuteQuestionPayload(
                run_id=run_id,
                model_target_id=model_target_id,
                question_id=question.id,
                question_title=question.title or "",
                thread_key=thread_key,
                rendered_prompt=rendered.result,
                question_mode=question.mode or QuestionMode.STATELESS,
                question_type=question.type or QuestionType.OPEN_ENDED,
                ranked_config=ranked_config,
                unresolved_variables=rendered.unresolved,
            )

            jobs.append(
                AllocatedJob(
                    model_target_id=model_target_id,
                    question_id=question.id,
                    thread_key=thread_key,
                    idempotency_key=build_idempotency_key(run_id, model_target_id, question.id),
                    payload=payload.model_dump(mode="json"),
                )
            )

    logger.info(f"Allocated {len(jobs)} jobs for run {run_id}")
    return jobs


def load_questions(db: Session, survey_id) -> List[Question]:
    return (
        db.query(Question)
        .filter(Question.survey_id == survey_id)
        .order_by(Question.order, Question.created_at)
        .all()
    )


def load_variable_map(db: Session, survey_id, overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    variables = db.query(Variable).filter(Variable.survey_id == survey_id).all()
    return merge_variables(variables, overrides)
