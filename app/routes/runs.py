"""Run routes."""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import InvalidRunStateError, RunLimitExceededError, RunNotFoundError, RunValidationError
from app.models.response import LlmResponse
from app.models.run import SurveyRun
from app.schemas.run import (
    ExportRequestResponse,
    ResponseItem,
    RunCreate,
    RunEstimate,
    RunEstimateRequest,
    RunProgress,
    RunResponse,
    RunSummary,
)
from app.services.completion import cancel_run, get_run_progress
from app.services.export import render_run_csv
from app.services.runs import estimate_for_survey, request_export, submit_run

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


@router.post("/estimate", response_model=RunEstimate)
def estimate_run(
    data: RunEstimateRequest,
    db: Session = Depends(get_db),
):
    """Project tokens and cost for a prospective run."""
    try:
        return estimate_for_survey(db, data.survey_id, data.model_target_ids)
    except RunValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("", response_model=RunResponse)
def create_run(
    data: RunCreate,
    db: Session = Depends(get_db),
):
    """Submit a run and queue its execution jobs."""
    try:
        run = submit_run(db, data.survey_id, data.model_target_ids, data.variable_overrides)
    except (RunValidationError, RunLimitExceededError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    estimate = RunEstimate.model_validate(run.estimate)
    return RunResponse(
        run_id=run.id,
        survey_id=run.survey_id,
        status=run.status.value,
        total_jobs=estimate.total_jobs,
        estimate=estimate,
    )


@router.get("", response_model=List[RunSummary])
def list_runs(db: Session = Depends(get_db)):
    """List all runs, newest first."""
    runs = db.query(SurveyRun).order_by(SurveyRun.created_at.desc()).all()
    return [
        RunSummary(
            run_id=r.id,
            survey_id=r.survey_id,
            status=r.status.value,
            created_at=r.created_at,
            completed_at=r.completed_at,
        )
        for r in runs
    ]


@router.get("/{run_id}", response_model=RunProgress)
def get_run(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Get run status and execution progress."""
    try:
        return get_run_progress(db, run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")


@router.get("/{run_id}/responses", response_model=List[ResponseItem])
def list_responses(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """List recorded responses for a run."""
    if db.get(SurveyRun, run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")

    responses = (
        db.query(LlmResponse)
        .filter(LlmResponse.run_id == run_id)
        .order_by(LlmResponse.created_at)
        .all()
    )
    return [
        ResponseItem(
            response_id=r.id,
            question_id=r.question_id,
            model_target_id=r.model_target_id,
            parsed=r.parsed,
            parse_error=r.parse_error,
            score=r.score,
            cost_usd=float(r.cost_usd or 0),
            latency_ms=r.latency_ms,
        )
        for r in responses
    ]


@router.post("/{run_id}/cancel")
def cancel(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Cancel a queued or running run."""
    try:
        cancelled = cancel_run(db, run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    except InvalidRunStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {"run_id": str(run_id), "status": "CANCELLED", "cancelled_jobs": cancelled}


@router.post("/{run_id}/export", response_model=ExportRequestResponse)
def export_run(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Queue a CSV export of a completed run."""
    try:
        job = request_export(db, run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    except InvalidRunStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ExportRequestResponse(run_id=run_id, job_id=job.id, message="Export queued")


@router.get("/{run_id}/export.csv")
def download_csv(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
):
    """Render a run's responses as CSV."""
    if db.get(SurveyRun, run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")

    return Response(
        content=render_run_csv(db, run_id),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="run-{run_id}.csv"'},
    )
