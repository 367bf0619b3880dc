"""LLM response, conversation thread and analysis models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.database import Base, JSONType


class LlmResponse(Base):
    """Recorded outcome of one execute-question job. Immutable once written."""

    __tablename__ = "llm_responses"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid(as_uuid=True), ForeignKey("survey_runs.id", ondelete="CASCADE"), nullable=False)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("jobs.id", ondelete="SET NULL"))
    model_target_id = Column(Uuid(as_uuid=True), ForeignKey("model_targets.id"), nullable=False)
    question_id = Column(Uuid(as_uuid=True), ForeignKey("questions.id"), nullable=False)
    thread_key = Column(Text)
    raw_text = Column(Text, nullable=False)
    parsed = Column(JSONType)  # None when the reply could not be repaired
    parse_error = Column(Text)
    citations = Column(JSONType)
    score = Column(Integer)  # Clamped score for ranked questions
    reasoning_text = Column(Text)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Numeric(14, 8), nullable=False, default=0)
    latency_ms = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)

    question = relationship("Question")
    model_target = relationship("ModelTarget")
    analysis = relationship("AnalysisResult", back_populates="response", uselist=False)

    __table_args__ = (
        Index("idx_llm_responses_run_id", "run_id"),
    )


class ConversationThread(Base):
    """Message history shared by threaded questions for one (run, model, thread key)."""

    __tablename__ = "conversation_threads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid(as_uuid=True), ForeignKey("survey_runs.id", ondelete="CASCADE"), nullable=False)
    model_target_id = Column(Uuid(as_uuid=True), nullable=False)
    thread_key = Column(Text, nullable=False)
    messages = Column(JSONType, nullable=False)  # [{"role": ..., "content": ...}]
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("run_id", "model_target_id", "thread_key", name="uq_thread_run_model_key"),
    )


class AnalysisResult(Base):
    """Derived signal for one response. Written once."""

    __tablename__ = "analysis_results"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    response_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("llm_responses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    sentiment_score = Column(Float)
    entities = Column(JSONType)
    brand_mentions = Column(JSONType)
    institution_mentions = Column(JSONType)
    flags = Column(JSONType)
    created_at = Column(DateTime, default=datetime.utcnow)

    response = relationship("LlmResponse", back_populates="analysis")
