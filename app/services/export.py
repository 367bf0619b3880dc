"""CSV rendering of a run's responses."""

import csv
import io
import logging
from pathlib import Path
from typing import Any, Dict, List

from sqlalchemy.orm import Session, joinedload

from app.models.response import LlmResponse
from app.models.survey import ModelTarget, Question

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "question_title",
    "model_name",
    "provider",
    "answer_text",
    "citations",
    "score",
    "sentiment_score",
    "cost_usd",
]


def load_export_rows(db: Session, run_id) -> List[Dict[str, Any]]:
    """One row per response, ordered by question display order then model."""
    responses = (
        db.query(LlmResponse)
        .join(Question, LlmResponse.question_id == Question.id)
        .join(ModelTarget, LlmResponse.model_target_id == ModelTarget.id)
        .options(
            joinedload(LlmResponse.question),
            joinedload(LlmResponse.model_target),
            joinedload(LlmResponse.analysis),
        )
        .filter(LlmResponse.run_id == run_id)
        .order_by(Question.order, ModelTarget.model_name, LlmResponse.created_at)
        .all()
    )

    rows = []
    for response in responses:
        parsed = response.parsed or {}
        citations = response.citations or []
        sentiment = response.analysis.sentiment_score if response.analysis else None
        rows.append({
            "question_title": response.question.title,
            "model_name": response.model_target.model_name,
            "provider": response.model_target.provider,
            "answer_text": parsed.get("answer_text") or response.reasoning_text or "",
            "citations": "; ".join(c.get("url", "") for c in citations if isinstance(c, dict)),
            "score": "" if response.score is None else str(response.score),
            "sentiment_score": "" if sentiment is None else f"{sentiment:.3f}",
            "cost_usd": str(response.cost_usd) if response.cost_usd is not None else "",
        })
    return rows


def render_csv(rows: List[Dict[str, Any]]) -> str:
    """Delimited rendering with standard quoting for commas, quotes and newlines."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, quoting=csv.QUOTE_MINIMAL)
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def render_run_csv(db: Session, run_id) -> str:
    return render_csv(load_export_rows(db, run_id))


def write_export(content: str, export_dir: str, run_id, timestamp: str) -> Path:
    directory = Path(export_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"run-{run_id}-{timestamp}.csv"
    path.write_text(content, encoding="utf-8")
    logger.info(f"Wrote export for run {run_id} to {path} ({len(content)} bytes)")
    return path
