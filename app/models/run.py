"""Survey run model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Uuid

from app.database import Base, JSONType


class RunStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_RUN_STATUSES = (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)
OPEN_RUN_STATUSES = (RunStatus.QUEUED, RunStatus.RUNNING)


class SurveyRun(Base):
    """One execution of a survey against a chosen set of model targets."""

    __tablename__ = "survey_runs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid(as_uuid=True), ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(RunStatus, name="run_status", native_enum=False), nullable=False, default=RunStatus.DRAFT)
    model_target_ids = Column(JSONType, nullable=False)  # List of model target id strings
    variable_overrides = Column(JSONType)
    estimate = Column(JSONType)  # Frozen at submission time
    limits = Column(JSONType)
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
