"""Job model for the worker queue."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Text, Uuid

from app.database import Base, JSONType


class JobType(str, enum.Enum):
    EXECUTE_QUESTION = "EXECUTE_QUESTION"
    ANALYZE_RESPONSE = "ANALYZE_RESPONSE"
    EXPORT_RUN = "EXPORT_RUN"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    CANCELLED = "CANCELLED"


INCOMPLETE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.RETRYING)
TERMINAL_JOB_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class Job(Base):
    """Job represents a queued unit of work for the worker."""

    __tablename__ = "jobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid(as_uuid=True), ForeignKey("survey_runs.id", ondelete="CASCADE"), nullable=False)
    model_target_id = Column(Uuid(as_uuid=True))  # Nullable for run-level jobs
    question_id = Column(Uuid(as_uuid=True))
    thread_key = Column(Text)
    type = Column(Enum(JobType, name="job_type", native_enum=False), nullable=False)
    status = Column(Enum(JobStatus, name="job_status", native_enum=False), nullable=False, default=JobStatus.PENDING)
    idempotency_key = Column(Text, nullable=False, unique=True)
    attempt = Column(Integer, nullable=False, default=0)
    payload = Column(JSONType)
    result = Column(JSONType)
    last_error = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    available_at = Column(DateTime)  # Earliest time a RETRYING job may be re-queued
    started_at = Column(DateTime)
    finished_at = Column(DateTime)

    __table_args__ = (
        Index("idx_jobs_type_status_created", "type", "status", "created_at"),
        Index("idx_jobs_run_id", "run_id"),
    )
