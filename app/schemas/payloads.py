"""Job payload schemas.

Payloads are opaque to the job store; handlers validate them on claim.
"""

from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.survey import QuestionMode, QuestionType

SCALE_PRESETS = {
    "1-5": (1, 5),
    "1-10": (1, 10),
    "percentage": (0, 100),
}


class RankedConfig(BaseModel):
    """Scale configuration for a RANKED question."""

    scale_preset: Literal["1-5", "1-10", "percentage"] = "1-10"
    scale_min: int = Field(default=1, ge=0)
    scale_max: int = 10
    include_reasoning: bool = True

    @model_validator(mode="after")
    def check_range(self) -> "RankedConfig":
        if self.scale_min >= self.scale_max:
            raise ValueError("scale_min must be less than scale_max")
        return self


class ExecuteQuestionPayload(BaseModel):
    """Payload for EXECUTE_QUESTION jobs."""

    run_id: UUID
    model_target_id: UUID
    question_id: UUID
    question_title: str = ""
    thread_key: str
    rendered_prompt: str
    question_mode: QuestionMode = QuestionMode.STATELESS
    question_type: QuestionType = QuestionType.OPEN_ENDED
    ranked_config: Optional[RankedConfig] = None
    unresolved_variables: List[str] = []

    @model_validator(mode="after")
    def check_ranked_config(self) -> "ExecuteQuestionPayload":
        if self.question_type == QuestionType.RANKED and self.ranked_config is None:
            raise ValueError("ranked questions require ranked_config")
        return self


class AnalyzeResponsePayload(BaseModel):
    """Payload for ANALYZE_RESPONSE jobs."""

    response_id: UUID
    run_id: UUID


class ExportRunPayload(BaseModel):
    """Payload for EXPORT_RUN jobs."""

    run_id: UUID
