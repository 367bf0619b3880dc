"""Run submission: validate, estimate, enforce limits, allocate, queue."""

import logging
import time
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import InvalidRunStateError, RunLimitExceededError, RunNotFoundError, RunValidationError
from app.models.job import Job, JobType
from app.models.run import RunStatus, SurveyRun
from app.models.survey import ModelTarget, Survey
from app.schemas.payloads import ExportRunPayload
from app.schemas.run import RunEstimate
from app.services.allocation import allocate_jobs, load_questions, load_variable_map
from app.services.estimation import estimate_run, estimate_survey_run
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)


def load_model_targets(db: Session, model_target_ids: Sequence) -> List[ModelTarget]:
    """
    Load enabled model targets, preserving the requested order.

    Raises:
        RunValidationError: Empty list, unknown or disabled ids
    """
    if not model_target_ids:
        raise RunValidationError("At least one model target is required")

    unique_ids = list(dict.fromkeys(model_target_ids))
    targets = db.query(ModelTarget).filter(ModelTarget.id.in_(unique_ids)).all()
    by_id = {t.id: t for t in targets}

    missing = [str(i) for i in unique_ids if i not in by_id]
    if missing:
        raise RunValidationError(f"Unknown model targets: {', '.join(missing)}")

    disabled = [str(t.id) for t in targets if not t.enabled]
    if disabled:
        raise RunValidationError(f"Disabled model targets: {', '.join(disabled)}")

    return [by_id[i] for i in unique_ids]


def estimate_for_survey(db: Session, survey_id, model_target_ids: Sequence) -> RunEstimate:
    if db.get(Survey, survey_id) is None:
        raise RunValidationError(f"Survey {survey_id} not found")
    targets = load_model_targets(db, model_target_ids)
    return estimate_survey_run(db, survey_id, targets)


def check_limits(
    estimate: RunEstimate,
    max_tokens: Optional[int] = None,
    max_cost_usd: Optional[float] = None,
) -> None:
    """
    Raises:
        RunLimitExceededError: If the estimate is above either ceiling
    """
    if max_tokens is None:
        max_tokens = settings.MAX_TOKENS_PER_RUN
    if max_cost_usd is None:
        max_cost_usd = settings.MAX_COST_PER_RUN_USD

    if estimate.estimated_total_tokens > max_tokens:
        raise RunLimitExceededError(
            f"Estimated tokens ({estimate.estimated_total_tokens:,}) exceed the limit of {max_tokens:,}"
        )
    if estimate.estimated_cost_usd > max_cost_usd:
        raise RunLimitExceededError(
            f"Estimated cost (${estimate.estimated_cost_usd:.2f}) exceeds the limit of ${max_cost_usd:.2f}"
        )


def submit_run(
    db: Session,
    survey_id,
    model_target_ids: Sequence,
    variable_overrides: Optional[Dict[str, str]] = None,
) -> SurveyRun:
    """
    Create a run and queue its execution jobs.

    Everything that can reject the run (unknown survey or models, empty
    survey, limits) is checked before any row is written.

    Returns:
        The run in QUEUED status
    """
    survey = db.get(Survey, survey_id)
    if survey is None:
        raise RunValidationError(f"Survey {survey_id} not found")

    targets = load_model_targets(db, model_target_ids)
    questions = load_questions(db, survey_id)
    if not questions:
        raise RunValidationError(f"Survey {survey_id} has no questions")

    estimate = estimate_run(len(questions), targets)
    check_limits(estimate)

    run = SurveyRun(
        survey_id=survey_id,
        status=RunStatus.DRAFT,
        model_target_ids=[str(t.id) for t in targets],
        variable_overrides=variable_overrides or {},
        estimate=estimate.model_dump(mode="json"),
        limits={
            "max_tokens_per_run": settings.MAX_TOKENS_PER_RUN,
            "max_cost_per_run_usd": settings.MAX_COST_PER_RUN_USD,
        },
    )
    db.add(run)
    db.flush()  # Flush to get the run id

    variable_map = load_variable_map(db, survey_id, variable_overrides)
    jobs = allocate_jobs(run.id, [t.id for t in targets], questions, variable_map)
    created = JobStore(db).enqueue(run.id, jobs, commit=False)

    run.status = RunStatus.QUEUED
    run.started_at = datetime.utcnow()
    db.commit()

    logger.info(f"Submitted run {run.id} for survey {survey_id}: {created} jobs queued")
    return run


def request_export(db: Session, run_id) -> Job:
    """
    Queue an EXPORT_RUN job for a completed run.

    Raises:
        RunNotFoundError: If the run does not exist
        InvalidRunStateError: If the run is not COMPLETED
    """
    run = db.get(SurveyRun, run_id)
    if run is None:
        raise RunNotFoundError(f"Run {run_id} not found")
    if run.status != RunStatus.COMPLETED:
        raise InvalidRunStateError(f"Cannot export a run with status {run.status.value}")

    idempotency_key = f"export:{run_id}:{int(time.time() * 1000)}"
    job = JobStore(db).enqueue_one(
        run_id=run_id,
        job_type=JobType.EXPORT_RUN,
        idempotency_key=idempotency_key,
        payload=ExportRunPayload(run_id=run_id).model_dump(mode="json"),
        thread_key=f"export-{run_id}",
    )
    logger.info(f"Enqueued export job {job.id} for run {run_id}")
    return job
