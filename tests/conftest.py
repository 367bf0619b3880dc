"""Pytest configuration and fixtures."""

import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base
from app.models.survey import ModelTarget, Question, QuestionMode, QuestionType, Survey, Variable
from app.services.llm_client import LLMResult

OPEN_ENDED_REPLY = json.dumps({
    "answer_text": "Acme Corp makes excellent and reliable tools loved by engineers.",
    "citations": [{"url": "https://example.com/acme", "title": "Acme"}],
})
RANKED_REPLY = json.dumps({"score": 7, "reasoning": "Strong, reliable and well supported."})


class FakeProvider:
    """Provider double that records calls and returns canned replies."""

    def __init__(self, replies=None, error=None, input_tokens=100, output_tokens=200):
        self.replies = list(replies or [])
        self.error = error
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls = []

    def complete(self, model, messages, **kwargs):
        self.calls.append({"model": model, "messages": [dict(m) for m in messages]})
        if self.error is not None:
            raise self.error
        if self.replies:
            text = self.replies.pop(0)
        elif "rate something" in messages[0]["content"]:
            text = RANKED_REPLY
        else:
            text = OPEN_ENDED_REPLY
        return LLMResult(
            text=text,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            latency_ms=12,
        )


def create_survey(db, questions=None, variables=None, title="Brand perception"):
    """Create a survey with questions ({title, prompt_template, ...}) and variable defaults."""
    survey = Survey(title=title)
    db.add(survey)
    db.flush()

    if questions is None:
        questions = [{"title": "Opinion", "prompt_template": "What do you think of {{brand}}?"}]

    for index, item in enumerate(questions):
        db.add(
            Question(
                survey_id=survey.id,
                order=item.get("order", index),
                title=item.get("title", f"Question {index + 1}"),
                prompt_template=item["prompt_template"],
                mode=item.get("mode", QuestionMode.STATELESS),
                thread_key=item.get("thread_key"),
                type=item.get("type", QuestionType.OPEN_ENDED),
                config=item.get("config"),
            )
        )

    for key, default in (variables or {}).items():
        db.add(Variable(survey_id=survey.id, key=key, default_value=default))

    db.commit()
    return survey


def create_model_target(db, provider="OPENAI", model_name="gpt-4o-mini", input_cost=0.15, output_cost=0.60, enabled=True):
    target = ModelTarget(
        provider=provider,
        model_name=model_name,
        input_cost_per_million=input_cost,
        output_cost_per_million=output_cost,
        enabled=enabled,
    )
    db.add(target)
    db.commit()
    return target


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database for each test."""
    db = session_factory()

    yield db

    db.close()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def provider_resolver(fake_provider):
    return lambda provider_key: fake_provider
