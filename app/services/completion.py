"""Run status transitions: start, completion arbitration, cancellation, progress."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.exceptions import InvalidRunStateError, RunNotFoundError
from app.models.job import INCOMPLETE_JOB_STATUSES, JobStatus, JobType
from app.models.run import OPEN_RUN_STATUSES, RunStatus, SurveyRun
from app.schemas.run import RunProgress
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)


def mark_run_running(db: Session, run_id) -> bool:
    """QUEUED -> RUNNING once execution begins. No-op for any other status."""
    updated = (
        db.query(SurveyRun)
        .filter(SurveyRun.id == run_id, SurveyRun.status == RunStatus.QUEUED)
        .update({SurveyRun.status: RunStatus.RUNNING}, synchronize_session=False)
    )
    db.commit()
    if updated:
        logger.info(f"Run {run_id} is running")
    return updated == 1


def check_run_completion(db: Session, run_id) -> Optional[RunStatus]:
    """
    Resolve a run once none of its execution jobs are outstanding.

    The run is FAILED only if every execution job failed; any success makes
    it COMPLETED. The write is conditional on the run still being open, so
    concurrent checks apply at most one transition.

    Returns:
        The new terminal status, or None if nothing changed
    """
    counts = JobStore(db).count_by_status(run_id, JobType.EXECUTE_QUESTION)
    outstanding = sum(counts[status] for status in INCOMPLETE_JOB_STATUSES)
    if outstanding:
        return None

    total = sum(counts.values())
    failed = counts[JobStatus.FAILED]
    new_status = RunStatus.FAILED if total and failed == total else RunStatus.COMPLETED

    updated = (
        db.query(SurveyRun)
        .filter(SurveyRun.id == run_id, SurveyRun.status.in_(OPEN_RUN_STATUSES))
        .update(
            {SurveyRun.status: new_status, SurveyRun.completed_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()

    if not updated:
        return None

    logger.info(f"Run {run_id} -> {new_status.value} ({failed}/{total} execution jobs failed)")
    return new_status


def cancel_run(db: Session, run_id) -> int:
    """
    Cancel an open run together with its not-yet-started jobs.

    Jobs already RUNNING are left to finish; their completion check will see
    the terminal run and do nothing.

    Returns:
        Number of jobs cancelled

    Raises:
        RunNotFoundError: If the run does not exist
        InvalidRunStateError: If the run is not QUEUED or RUNNING
    """
    run = db.get(SurveyRun, run_id)
    if run is None:
        raise RunNotFoundError(f"Run {run_id} not found")

    updated = (
        db.query(SurveyRun)
        .filter(SurveyRun.id == run_id, SurveyRun.status.in_(OPEN_RUN_STATUSES))
        .update(
            {SurveyRun.status: RunStatus.CANCELLED, SurveyRun.completed_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        db.refresh(run)
        raise InvalidRunStateError(f"Cannot cancel a run with status {run.status.value}")

    cancelled = JobStore(db).cancel_pending(run_id, commit=False)
    db.commit()

    logger.info(f"Cancelled run {run_id} ({cancelled} jobs cancelled)")
    return cancelled


def get_run_progress(db: Session, run_id) -> RunProgress:
    """Snapshot of execution-job counts and run status, for polling clients."""
    run = db.get(SurveyRun, run_id)
    if run is None:
        raise RunNotFoundError(f"Run {run_id} not found")

    counts = JobStore(db).count_by_status(run_id, JobType.EXECUTE_QUESTION)
    total = sum(counts.values())
    succeeded = counts[JobStatus.SUCCEEDED]
    failed = counts[JobStatus.FAILED]
    cancelled = counts[JobStatus.CANCELLED]
    done = succeeded + failed + cancelled

    return RunProgress(
        run_id=run.id,
        status=run.status.value,
        total=total,
        succeeded=succeeded,
        failed=failed,
        running=counts[JobStatus.RUNNING],
        pending=counts[JobStatus.PENDING] + counts[JobStatus.RETRYING],
        cancelled=cancelled,
        progress=(done / total) if total else 0.0,
        started_at=run.started_at,
        completed_at=run.completed_at,
    )
