"""Survey, question, variable and model target models.

These tables are authored elsewhere; the runner only reads them.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, Numeric, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base, JSONType


class QuestionMode(str, enum.Enum):
    STATELESS = "STATELESS"
    THREADED = "THREADED"


class QuestionType(str, enum.Enum):
    OPEN_ENDED = "OPEN_ENDED"
    RANKED = "RANKED"


class Survey(Base):
    """A named, ordered set of question prompts."""

    __tablename__ = "surveys"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    questions = relationship(
        "Question",
        back_populates="survey",
        order_by="Question.order",
        cascade="all, delete-orphan",
    )
    variables = relationship("Variable", back_populates="survey", cascade="all, delete-orphan")


class Question(Base):
    """One prompt template within a survey."""

    __tablename__ = "questions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid(as_uuid=True), ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False)
    order = Column(Integer, nullable=False, default=0)
    title = Column(Text, nullable=False)
    prompt_template = Column(Text, nullable=False)
    mode = Column(Enum(QuestionMode, name="question_mode", native_enum=False), nullable=False, default=QuestionMode.STATELESS)
    thread_key = Column(Text)  # Thread group for THREADED questions
    type = Column(Enum(QuestionType, name="question_type", native_enum=False), nullable=False, default=QuestionType.OPEN_ENDED)
    config = Column(JSONType)  # Ranked-scale config for RANKED questions
    created_at = Column(DateTime, default=datetime.utcnow)

    survey = relationship("Survey", back_populates="questions")

    __table_args__ = (
        Index("idx_questions_survey_order", "survey_id", "order"),
    )


class Variable(Base):
    """A `{{key}}` placeholder with an optional default value."""

    __tablename__ = "variables"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid(as_uuid=True), ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False)
    key = Column(Text, nullable=False)
    label = Column(Text)
    default_value = Column(Text)

    survey = relationship("Survey", back_populates="variables")


class ModelTarget(Base):
    """A provider/model pair that questions can be sent to, with its pricing."""

    __tablename__ = "model_targets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider = Column(Text, nullable=False)  # 'OPENAI', 'ANTHROPIC', 'OPENROUTER', ...
    model_name = Column(Text, nullable=False)
    input_cost_per_million = Column(Numeric(12, 6), nullable=False, default=0)
    output_cost_per_million = Column(Numeric(12, 6), nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
