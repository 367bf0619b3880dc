"""Tests for run submission."""

import uuid

import pytest

from app.config import settings
from app.exceptions import RunLimitExceededError, RunValidationError
from app.models.job import Job, JobStatus, JobType
from app.models.run import RunStatus, SurveyRun
from app.services.allocation import allocate_jobs, load_questions, load_variable_map
from app.services.job_store import JobStore
from app.services.runs import estimate_for_survey, submit_run
from conftest import create_model_target, create_survey

THREE_QUESTIONS = [
    {"prompt_template": "What is {{brand}}?"},
    {"prompt_template": "Who uses {{brand}}?"},
    {"prompt_template": "Why {{brand}}?"},
]


def test_submit_queues_one_job_per_model_and_question(test_db):
    survey = create_survey(test_db, questions=THREE_QUESTIONS, variables={"brand": "Acme"})
    targets = [create_model_target(test_db, model_name=f"model-{i}") for i in range(2)]

    run = submit_run(test_db, survey.id, [t.id for t in targets], {"brand": "Globex"})

    assert run.status == RunStatus.QUEUED
    assert run.started_at is not None
    assert run.estimate["total_jobs"] == 6
    assert run.limits["max_cost_per_run_usd"] == settings.MAX_COST_PER_RUN_USD

    jobs = test_db.query(Job).filter(Job.run_id == run.id).all()
    assert len(jobs) == 6
    assert {j.status for j in jobs} == {JobStatus.PENDING}
    assert all("Globex" in j.payload["rendered_prompt"] for j in jobs)


def test_resubmitting_allocation_creates_nothing(test_db):
    survey = create_survey(test_db, questions=THREE_QUESTIONS)
    target = create_model_target(test_db)
    run = submit_run(test_db, survey.id, [target.id])

    jobs = allocate_jobs(run.id, [target.id], load_questions(test_db, survey.id), load_variable_map(test_db, survey.id))

    assert JobStore(test_db).enqueue(run.id, jobs) == 0
    assert test_db.query(Job).filter(Job.type == JobType.EXECUTE_QUESTION).count() == 3


def test_unknown_survey_rejected(test_db):
    target = create_model_target(test_db)

    with pytest.raises(RunValidationError):
        submit_run(test_db, uuid.uuid4(), [target.id])


def test_empty_survey_rejected(test_db):
    survey = create_survey(test_db, questions=[])
    target = create_model_target(test_db)

    with pytest.raises(RunValidationError, match="no questions"):
        submit_run(test_db, survey.id, [target.id])


def test_unknown_model_rejected(test_db):
    survey = create_survey(test_db)

    with pytest.raises(RunValidationError, match="Unknown model targets"):
        submit_run(test_db, survey.id, [uuid.uuid4()])


def test_disabled_model_rejected(test_db):
    survey = create_survey(test_db)
    target = create_model_target(test_db, enabled=False)

    with pytest.raises(RunValidationError, match="Disabled"):
        submit_run(test_db, survey.id, [target.id])


def test_empty_model_list_rejected(test_db):
    survey = create_survey(test_db)

    with pytest.raises(RunValidationError):
        submit_run(test_db, survey.id, [])


def test_cost_limit_rejects_before_creating_anything(test_db, monkeypatch):
    monkeypatch.setattr(settings, "MAX_COST_PER_RUN_USD", 0.0001)
    survey = create_survey(test_db, questions=THREE_QUESTIONS)
    target = create_model_target(test_db, input_cost=3.0, output_cost=15.0)

    with pytest.raises(RunLimitExceededError):
        submit_run(test_db, survey.id, [target.id])

    assert test_db.query(SurveyRun).count() == 0
    assert test_db.query(Job).count() == 0


def test_token_limit(test_db, monkeypatch):
    monkeypatch.setattr(settings, "MAX_TOKENS_PER_RUN", 1000)
    survey = create_survey(test_db)
    target = create_model_target(test_db)

    with pytest.raises(RunLimitExceededError, match="tokens"):
        submit_run(test_db, survey.id, [target.id])


def test_estimate_for_survey(test_db):
    survey = create_survey(test_db, questions=THREE_QUESTIONS)
    target = create_model_target(test_db)

    estimate = estimate_for_survey(test_db, survey.id, [target.id])

    assert estimate.total_jobs == 3
    assert estimate.estimated_total_tokens == 3 * 1500
