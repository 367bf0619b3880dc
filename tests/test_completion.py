"""Tests for run completion, cancellation and progress."""

import uuid

import pytest

from app.exceptions import InvalidRunStateError, RunNotFoundError
from app.models.job import Job, JobStatus, JobType
from app.models.run import RunStatus, SurveyRun
from app.services.allocation import AllocatedJob
from app.services.completion import cancel_run, check_run_completion, get_run_progress, mark_run_running
from app.services.job_store import JobStore
from conftest import create_survey


def _make_run(db, job_count, status=RunStatus.RUNNING):
    survey = create_survey(db)
    run = SurveyRun(survey_id=survey.id, status=status, model_target_ids=[])
    db.add(run)
    db.commit()
    JobStore(db).enqueue(
        run.id,
        [
            AllocatedJob(
                model_target_id=None,
                question_id=None,
                thread_key=f"t{i}",
                idempotency_key=f"{run.id}:{i}",
                payload={},
            )
            for i in range(job_count)
        ],
    )
    return run


def _set_statuses(db, run_id, statuses):
    jobs = db.query(Job).filter(Job.run_id == run_id).order_by(Job.created_at).all()
    for job, status in zip(jobs, statuses):
        job.status = status
    db.commit()


def test_partial_success_completes(test_db):
    """Test 3 succeeded + 2 failed resolves to COMPLETED."""
    run = _make_run(test_db, 5)
    _set_statuses(test_db, run.id, [JobStatus.SUCCEEDED] * 3 + [JobStatus.FAILED] * 2)

    assert check_run_completion(test_db, run.id) == RunStatus.COMPLETED

    test_db.expire_all()
    run = test_db.get(SurveyRun, run.id)
    assert run.status == RunStatus.COMPLETED
    assert run.completed_at is not None


def test_all_failed_fails_run(test_db):
    run = _make_run(test_db, 5)
    _set_statuses(test_db, run.id, [JobStatus.FAILED] * 5)

    assert check_run_completion(test_db, run.id) == RunStatus.FAILED


@pytest.mark.parametrize("outstanding", [JobStatus.PENDING, JobStatus.RUNNING, JobStatus.RETRYING])
def test_outstanding_job_keeps_run_open(test_db, outstanding):
    run = _make_run(test_db, 5)
    _set_statuses(test_db, run.id, [JobStatus.SUCCEEDED] * 4 + [outstanding])

    assert check_run_completion(test_db, run.id) is None
    test_db.expire_all()
    assert test_db.get(SurveyRun, run.id).status == RunStatus.RUNNING


def test_second_completion_check_is_noop(test_db):
    run = _make_run(test_db, 2)
    _set_statuses(test_db, run.id, [JobStatus.SUCCEEDED, JobStatus.FAILED])

    assert check_run_completion(test_db, run.id) == RunStatus.COMPLETED
    assert check_run_completion(test_db, run.id) is None


def test_completion_ignores_analysis_jobs(test_db):
    run = _make_run(test_db, 1)
    _set_statuses(test_db, run.id, [JobStatus.SUCCEEDED])
    JobStore(test_db).enqueue_one(run.id, JobType.ANALYZE_RESPONSE, "analyze:x", {})

    assert check_run_completion(test_db, run.id) == RunStatus.COMPLETED


def test_completion_after_cancel_is_noop(test_db):
    run = _make_run(test_db, 2)
    cancel_run(test_db, run.id)

    assert check_run_completion(test_db, run.id) is None
    test_db.expire_all()
    assert test_db.get(SurveyRun, run.id).status == RunStatus.CANCELLED


def test_cancel_marks_unstarted_jobs(test_db):
    run = _make_run(test_db, 3, status=RunStatus.QUEUED)
    _set_statuses(test_db, run.id, [JobStatus.RUNNING, JobStatus.RETRYING, JobStatus.PENDING])

    assert cancel_run(test_db, run.id) == 2

    counts = JobStore(test_db).count_by_status(run.id)
    assert counts[JobStatus.CANCELLED] == 2
    assert counts[JobStatus.RUNNING] == 1


def test_cancel_terminal_run_rejected(test_db):
    run = _make_run(test_db, 1, status=RunStatus.COMPLETED)

    with pytest.raises(InvalidRunStateError):
        cancel_run(test_db, run.id)


def test_cancel_unknown_run(test_db):
    with pytest.raises(RunNotFoundError):
        cancel_run(test_db, uuid.uuid4())


def test_mark_run_running_only_from_queued(test_db):
    run = _make_run(test_db, 1, status=RunStatus.QUEUED)

    assert mark_run_running(test_db, run.id)
    assert not mark_run_running(test_db, run.id)


def test_progress_snapshot(test_db):
    run = _make_run(test_db, 4)
    _set_statuses(
        test_db,
        run.id,
        [JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.RUNNING, JobStatus.RETRYING],
    )

    progress = get_run_progress(test_db, run.id)

    assert progress.total == 4
    assert progress.succeeded == 1
    assert progress.failed == 1
    assert progress.running == 1
    assert progress.pending == 1
    assert progress.progress == pytest.approx(0.5)
    assert progress.status == "RUNNING"
