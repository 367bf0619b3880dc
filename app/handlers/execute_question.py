"""Execute-question handler: call the provider and record the response."""

import logging
from typing import Dict, List, Optional

from app.exceptions import ConfigurationError, ProviderError
from app.handlers.base import BaseHandler
from app.models.job import Job, JobStatus, JobType
from app.models.response import ConversationThread, LlmResponse
from app.models.run import RunStatus, SurveyRun
from app.models.survey import ModelTarget, QuestionMode, QuestionType
from app.schemas.answers import OpenEndedAnswer, RankedAnswer
from app.schemas.payloads import AnalyzeResponsePayload, ExecuteQuestionPayload
from app.services.completion import check_run_completion, mark_run_running
from app.services.estimation import compute_cost
from app.services.json_repair import repair_and_parse
from app.services.prompts import build_system_prompt, build_user_prompt, clamp_score

logger = logging.getLogger(__name__)


def build_analyze_key(response_id) -> str:
    return f"analyze:{response_id}"


class ExecuteQuestionHandler(BaseHandler):
    """Send one rendered question to one model and persist the reply."""

    job_type = JobType.EXECUTE_QUESTION
    payload_model = ExecuteQuestionPayload

    def _run(self, job: Job, payload: ExecuteQuestionPayload) -> JobStatus:
        mark_run_running(self.db, payload.run_id)

        target = self.db.get(ModelTarget, payload.model_target_id)
        if target is None:
            self.store.finish(job, JobStatus.FAILED, error=f"Model target {payload.model_target_id} not found")
            check_run_completion(self.db, payload.run_id)
            return JobStatus.FAILED

        thread = self._load_thread(payload)
        user_prompt = build_user_prompt(payload.rendered_prompt, payload.question_type, payload.ranked_config)
        messages = self._build_messages(payload, thread, user_prompt)

        try:
            provider = self.provider_resolver(target.provider)
            result = provider.complete(target.model_name, messages)
        except (ProviderError, ConfigurationError) as e:
            retryable = isinstance(e, ProviderError) and e.retryable
            logger.warning(f"Provider call failed for job {job.id} ({target.provider}/{target.model_name}): {e}")
            status = self.store.fail_or_retry(job, str(e), retryable)
            if status == JobStatus.FAILED:
                check_run_completion(self.db, payload.run_id)
            return status

        is_ranked = payload.question_type == QuestionType.RANKED
        repaired = repair_and_parse(result.text, RankedAnswer if is_ranked else OpenEndedAnswer)
        if repaired.error:
            logger.warning(f"Unparseable reply for job {job.id}: {repaired.error}")

        score = None
        reasoning = None
        citations = None
        if repaired.parsed is not None:
            if is_ranked:
                config = payload.ranked_config
                score = clamp_score(repaired.parsed["score"], config.scale_min, config.scale_max)
                reasoning = repaired.parsed.get("reasoning")
            else:
                citations = repaired.parsed.get("citations", [])

        response = LlmResponse(
            run_id=payload.run_id,
            job_id=job.id,
            model_target_id=target.id,
            question_id=payload.question_id,
            thread_key=payload.thread_key,
            raw_text=result.text,
            parsed=repaired.parsed,
            parse_error=repaired.error,
            citations=citations,
            score=score,
            reasoning_text=reasoning,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost_usd=compute_cost(
                result.input_tokens,
                result.output_tokens,
                target.input_cost_per_million,
                target.output_cost_per_million,
            ),
            latency_ms=result.latency_ms,
        )
        self.db.add(response)

        if payload.question_mode == QuestionMode.THREADED:
            turns = [
                {"role": "user", "content": user_prompt},
                {"role": "assistant", "content": result.text},
            ]
            if thread is None:
                self.db.add(
                    ConversationThread(
                        run_id=payload.run_id,
                        model_target_id=target.id,
                        thread_key=payload.thread_key,
                        messages=turns,
                    )
                )
            else:
                # Reassign so the JSON column change is detected
                thread.messages = list(thread.messages or []) + turns

        self.db.flush()  # Flush to get the response id
        response_id = response.id

        finished = self.store.finish(
            job,
            JobStatus.SUCCEEDED,
            error=repaired.error,
            result={"response_id": str(response_id)},
            commit=False,
        )
        if not finished:
            # Lease expired and the job was recovered elsewhere; drop our write
            self.db.rollback()
            return job.status
        self.db.commit()

        logger.info(
            f"Recorded response {response_id} for job {job.id} "
            f"({result.input_tokens} in / {result.output_tokens} out)"
        )

        if self._wants_analysis(payload):
            self._enqueue_analysis(payload, response_id)

        check_run_completion(self.db, payload.run_id)
        return JobStatus.SUCCEEDED

    def _on_failed(self, job: Job, payload: Optional[ExecuteQuestionPayload]) -> None:
        run_id = payload.run_id if payload is not None else job.run_id
        check_run_completion(self.db, run_id)

    def _load_thread(self, payload: ExecuteQuestionPayload) -> Optional[ConversationThread]:
        if payload.question_mode != QuestionMode.THREADED:
            return None
        return (
            self.db.query(ConversationThread)
            .filter(
                ConversationThread.run_id == payload.run_id,
                ConversationThread.model_target_id == payload.model_target_id,
                ConversationThread.thread_key == payload.thread_key,
            )
            .first()
        )

    @staticmethod
    def _build_messages(
        payload: ExecuteQuestionPayload,
        thread: Optional[ConversationThread],
        user_prompt: str,
    ) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": build_system_prompt(payload.question_type)}]
        if thread is not None:
            messages.extend({"role": m["role"], "content": m["content"]} for m in thread.messages or [])
        messages.append({"role": "user", "content": user_prompt})
        return messages

    @staticmethod
    def _wants_analysis(payload: ExecuteQuestionPayload) -> bool:
        """Ranked questions without reasoning have no text worth analysing."""
        if payload.question_type == QuestionType.RANKED:
            return bool(payload.ranked_config and payload.ranked_config.include_reasoning)
        return True

    def _enqueue_analysis(self, payload: ExecuteQuestionPayload, response_id) -> None:
        run = self.db.get(SurveyRun, payload.run_id)
        if run is None or run.status == RunStatus.CANCELLED:
            logger.info(f"Run {payload.run_id} is cancelled, not analysing response {response_id}")
            return

        self.store.enqueue_one(
            run_id=payload.run_id,
            job_type=JobType.ANALYZE_RESPONSE,
            idempotency_key=build_analyze_key(response_id),
            payload=AnalyzeResponsePayload(response_id=response_id, run_id=payload.run_id).model_dump(mode="json"),
            model_target_id=payload.model_target_id,
            thread_key=payload.thread_key,
        )
