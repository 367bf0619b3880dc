"""SQLAlchemy ORM models."""

from app.models.survey import ModelTarget, Question, QuestionMode, QuestionType, Survey, Variable
from app.models.run import RunStatus, SurveyRun
from app.models.job import Job, JobStatus, JobType
from app.models.response import AnalysisResult, ConversationThread, LlmResponse

__all__ = [
    "Survey",
    "Question",
    "QuestionMode",
    "QuestionType",
    "Variable",
    "ModelTarget",
    "SurveyRun",
    "RunStatus",
    "Job",
    "JobStatus",
    "JobType",
    "LlmResponse",
    "ConversationThread",
    "AnalysisResult",
]
