"""Analyze-response handler: sentiment, entities and quality flags."""

import logging

from app.handlers.base import BaseHandler
from app.models.job import Job, JobStatus, JobType
from app.models.response import AnalysisResult, LlmResponse
from app.schemas.payloads import AnalyzeResponsePayload
from app.services.analysis import (
    analyze_sentiment,
    build_flags,
    extract_brand_mentions,
    extract_entities,
    extract_institution_mentions,
)

logger = logging.getLogger(__name__)

EMPTY_ENTITIES = {"people": [], "places": [], "organizations": []}


def select_analysis_text(response: LlmResponse) -> str:
    """Reasoning for ranked replies, otherwise the free-text answer."""
    if response.reasoning_text:
        return response.reasoning_text
    return (response.parsed or {}).get("answer_text") or ""


class AnalyzeResponseHandler(BaseHandler):
    """Best-effort enrichment of a recorded response. Never fails the run."""

    job_type = JobType.ANALYZE_RESPONSE
    payload_model = AnalyzeResponsePayload

    def _run(self, job: Job, payload: AnalyzeResponsePayload) -> JobStatus:
        existing = (
            self.db.query(AnalysisResult)
            .filter(AnalysisResult.response_id == payload.response_id)
            .first()
        )
        if existing is not None:
            logger.info(f"Response {payload.response_id} already analysed")
            self.store.finish(job, JobStatus.SUCCEEDED, result={"analysis_id": str(existing.id)})
            return JobStatus.SUCCEEDED

        response = self.db.get(LlmResponse, payload.response_id)
        if response is None:
            logger.warning(f"Response {payload.response_id} not found, nothing to analyse")
            self.store.finish(job, JobStatus.SUCCEEDED, error=f"Response {payload.response_id} not found")
            return JobStatus.SUCCEEDED

        analysis = self._analyze(response)
        self.db.add(analysis)
        self.db.flush()
        analysis_id = analysis.id

        if not self.store.finish(job, JobStatus.SUCCEEDED, result={"analysis_id": str(analysis_id)}, commit=False):
            self.db.rollback()
            return job.status
        self.db.commit()

        logger.info(f"Analysed response {payload.response_id}: flags={analysis.flags}")
        return JobStatus.SUCCEEDED

    @staticmethod
    def _analyze(response: LlmResponse) -> AnalysisResult:
        if response.parsed is None:
            return AnalysisResult(
                response_id=response.id,
                entities=EMPTY_ENTITIES,
                brand_mentions=[],
                institution_mentions=[],
                flags=["invalid_json"],
            )

        text = select_analysis_text(response)
        if not text.strip():
            return AnalysisResult(
                response_id=response.id,
                entities=EMPTY_ENTITIES,
                brand_mentions=[],
                institution_mentions=[],
                flags=["empty_answer"],
            )

        sentiment = analyze_sentiment(text)
        return AnalysisResult(
            response_id=response.id,
            sentiment_score=sentiment,
            entities=extract_entities(text),
            brand_mentions=extract_brand_mentions(text),
            institution_mentions=extract_institution_mentions(text),
            flags=build_flags(text, sentiment),
        )
