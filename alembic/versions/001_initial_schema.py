"""Initial schema

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "jobs" in existing_tables:
        # Tables already exist, skip migration
        return

    # Collaborator tables (survey authoring)
    op.create_table(
        "surveys",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "questions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("survey_id", sa.Uuid(), sa.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("prompt_template", sa.Text, nullable=False),
        sa.Column("mode", sa.String(16), nullable=False, server_default="STATELESS"),
        sa.Column("thread_key", sa.Text),
        sa.Column("type", sa.String(16), nullable=False, server_default="OPEN_ENDED"),
        sa.Column("config", JSONType),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_questions_survey_order", "questions", ["survey_id", "order"])

    op.create_table(
        "variables",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("survey_id", sa.Uuid(), sa.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False),
        sa.Column("key", sa.Text, nullable=False),
        sa.Column("label", sa.Text),
        sa.Column("default_value", sa.Text),
    )

    op.create_table(
        "model_targets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("provider", sa.Text, nullable=False),
        sa.Column("model_name", sa.Text, nullable=False),
        sa.Column("input_cost_per_million", sa.Numeric(12, 6), nullable=False, server_default="0"),
        sa.Column("output_cost_per_million", sa.Numeric(12, 6), nullable=False, server_default="0"),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
    )

    # Create survey_runs table
    op.create_table(
        "survey_runs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("survey_id", sa.Uuid(), sa.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("model_target_ids", JSONType, nullable=False),
        sa.Column("variable_overrides", JSONType),
        sa.Column("estimate", JSONType),
        sa.Column("limits", JSONType),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
    )

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("run_id", sa.Uuid(), sa.ForeignKey("survey_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("model_target_id", sa.Uuid()),
        sa.Column("question_id", sa.Uuid()),
        sa.Column("thread_key", sa.Text),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("idempotency_key", sa.Text, nullable=False, unique=True),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="0"),
        sa.Column("payload", JSONType),
        sa.Column("result", JSONType),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("available_at", sa.DateTime),
        sa.Column("started_at", sa.DateTime),
        sa.Column("finished_at", sa.DateTime),
    )
    op.create_index("idx_jobs_type_status_created", "jobs", ["type", "status", "created_at"])
    op.create_index("idx_jobs_run_id", "jobs", ["run_id"])

    # Create llm_responses table
    op.create_table(
        "llm_responses",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("run_id", sa.Uuid(), sa.ForeignKey("survey_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.id", ondelete="SET NULL")),
        sa.Column("model_target_id", sa.Uuid(), sa.ForeignKey("model_targets.id"), nullable=False),
        sa.Column("question_id", sa.Uuid(), sa.ForeignKey("questions.id"), nullable=False),
        sa.Column("thread_key", sa.Text),
        sa.Column("raw_text", sa.Text, nullable=False),
        sa.Column("parsed", JSONType),
        sa.Column("parse_error", sa.Text),
        sa.Column("citations", JSONType),
        sa.Column("score", sa.Integer),
        sa.Column("reasoning_text", sa.Text),
        sa.Column("input_tokens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("output_tokens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("cost_usd", sa.Numeric(14, 8), nullable=False, server_default="0"),
        sa.Column("latency_ms", sa.Integer),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_llm_responses_run_id", "llm_responses", ["run_id"])

    # Create conversation_threads table
    op.create_table(
        "conversation_threads",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("run_id", sa.Uuid(), sa.ForeignKey("survey_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("model_target_id", sa.Uuid(), nullable=False),
        sa.Column("thread_key", sa.Text, nullable=False),
        sa.Column("messages", JSONType, nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("run_id", "model_target_id", "thread_key", name="uq_thread_run_model_key"),
    )

    # Create analysis_results table
    op.create_table(
        "analysis_results",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "response_id",
            sa.Uuid(),
            sa.ForeignKey("llm_responses.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("sentiment_score", sa.Float),
        sa.Column("entities", JSONType),
        sa.Column("brand_mentions", JSONType),
        sa.Column("institution_mentions", JSONType),
        sa.Column("flags", JSONType),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("analysis_results")
    op.drop_table("conversation_threads")
    op.drop_table("llm_responses")
    op.drop_table("jobs")
    op.drop_table("survey_runs")
    op.drop_table("model_targets")
    op.drop_table("variables")
    op.drop_table("questions")
    op.drop_table("surveys")
