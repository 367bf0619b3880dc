"""Run-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RunEstimateRequest(BaseModel):
    """Schema for estimating a prospective run."""

    survey_id: UUID
    model_target_ids: List[UUID] = Field(min_length=1)


class RunCreate(RunEstimateRequest):
    """Schema for submitting a new run."""

    variable_overrides: Dict[str, str] = {}


class ModelEstimate(BaseModel):
    """Projected usage for one model target."""

    model_target_id: UUID
    model_name: str
    provider: str
    job_count: int
    estimated_input_tokens: int
    estimated_output_tokens: int
    estimated_cost_usd: float


class RunEstimate(BaseModel):
    """Projected usage for a whole run."""

    total_questions: int
    total_models: int
    total_jobs: int
    estimated_input_tokens: int
    estimated_output_tokens: int
    estimated_total_tokens: int
    estimated_cost_usd: float
    per_model: List[ModelEstimate]


class RunResponse(BaseModel):
    """Response after creating a run."""

    run_id: UUID
    survey_id: UUID
    status: str
    total_jobs: int
    estimate: RunEstimate


class RunProgress(BaseModel):
    """Read-only snapshot of execution progress for a run."""

    run_id: UUID
    status: str
    total: int
    succeeded: int
    failed: int
    running: int
    pending: int
    cancelled: int
    progress: float  # Fraction of execution jobs in a terminal state
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RunSummary(BaseModel):
    """Row in the run listing."""

    run_id: UUID
    survey_id: UUID
    status: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ResponseItem(BaseModel):
    """One recorded provider response."""

    response_id: UUID
    question_id: UUID
    model_target_id: UUID
    parsed: Optional[Dict[str, Any]] = None
    parse_error: Optional[str] = None
    score: Optional[int] = None
    cost_usd: float
    latency_ms: Optional[int] = None


class ExportRequestResponse(BaseModel):
    """Response after enqueueing an export."""

    run_id: UUID
    job_id: UUID
    message: str
