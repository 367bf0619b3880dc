"""Persistent job queue with optimistic claiming.

All status changes are single conditional UPDATEs guarded by the status the
caller expects, so concurrent workers never double-process a job and never
hold row locks across a decision.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Collection, Dict, Iterable, List, NamedTuple, Optional, Set

from sqlalchemy import exists, func, or_
from sqlalchemy.orm import Session, aliased

from app.config import settings
from app.models.job import Job, JobStatus, JobType

logger = logging.getLogger(__name__)

# Keep IN (...) lists well below driver parameter limits
KEY_LOOKUP_CHUNK = 500

# Statuses that still hold a conversation slot
OPEN_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.RETRYING)


class RecoveredJob(NamedTuple):
    job_id: Any
    run_id: Any
    type: JobType
    status: JobStatus


def retry_delay(attempt: int) -> timedelta:
    """Exponential backoff for the given (1-based) attempt number."""
    seconds = settings.RETRY_BACKOFF_BASE_SECONDS * (2 ** max(attempt - 1, 0))
    return timedelta(seconds=min(seconds, settings.RETRY_BACKOFF_MAX_SECONDS))


class JobStore:
    """Data access for the `jobs` table."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def enqueue(self, run_id, jobs: Iterable, commit: bool = True) -> int:
        """
        Insert jobs whose idempotency key does not exist yet.

        Each item needs `type`, `idempotency_key` and `payload`; `model_target_id`,
        `question_id` and `thread_key` are optional. Creation order is kept in
        `created_at` so claiming is oldest first.

        Returns:
            Number of jobs actually created
        """
        jobs = list(jobs)
        existing = self._existing_keys([j.idempotency_key for j in jobs])
        base_time = datetime.utcnow()
        created = 0

        for index, item in enumerate(jobs):
            if item.idempotency_key in existing:
                continue
            self.db.add(
                Job(
                    run_id=run_id,
                    type=item.type,
                    status=JobStatus.PENDING,
                    idempotency_key=item.idempotency_key,
                    model_target_id=getattr(item, "model_target_id", None),
                    question_id=getattr(item, "question_id", None),
                    thread_key=getattr(item, "thread_key", None),
                    payload=item.payload,
                    attempt=0,
                    created_at=base_time + timedelta(microseconds=index),
                )
            )
            existing.add(item.idempotency_key)
            created += 1

        if commit:
            self.db.commit()

        skipped = len(jobs) - created
        if skipped:
            logger.info(f"Skipped {skipped} duplicate jobs for run {run_id}")
        return created

    def enqueue_one(
        self,
        run_id,
        job_type: JobType,
        idempotency_key: str,
        payload: Dict[str, Any],
        model_target_id=None,
        thread_key: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[Job]:
        """Insert a single job unless its idempotency key is taken."""
        if self._existing_keys([idempotency_key]):
            logger.info(f"Job {idempotency_key} already exists, not enqueued")
            return None

        job = Job(
            run_id=run_id,
            type=job_type,
            status=JobStatus.PENDING,
            idempotency_key=idempotency_key,
            model_target_id=model_target_id,
            thread_key=thread_key,
            payload=payload,
            attempt=0,
        )
        self.db.add(job)
        if commit:
            self.db.commit()
        return job

    def _existing_keys(self, keys: List[str]) -> Set[str]:
        found: Set[str] = set()
        for start in range(0, len(keys), KEY_LOOKUP_CHUNK):
            chunk = keys[start:start + KEY_LOOKUP_CHUNK]
            rows = self.db.query(Job.idempotency_key).filter(Job.idempotency_key.in_(chunk)).all()
            found.update(row[0] for row in rows)
        return found

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def claim_next(
        self,
        job_type: JobType,
        exclude_ids: Collection = (),
        max_races: int = 3,
    ) -> Optional[Job]:
        """
        Claim the oldest PENDING job of `job_type`.

        Execution jobs wait while an older job of the same run and thread key
        is still open, so a conversation advances one turn at a time.

        Selection and claim are separate statements; losing the race for the
        selected row just means selecting again, up to `max_races` times.
        """
        for _ in range(max_races):
            query = self.db.query(Job.id).filter(
                Job.type == job_type,
                Job.status == JobStatus.PENDING,
            )
            if job_type == JobType.EXECUTE_QUESTION:
                query = query.filter(~self._earlier_turn_open())
            if exclude_ids:
                query = query.filter(Job.id.notin_(list(exclude_ids)))

            row = query.order_by(Job.created_at, Job.id).first()
            if row is None:
                return None

            if self.try_claim(row.id):
                job = self.db.get(Job, row.id, populate_existing=True)
                logger.info(f"Claimed job {job.id} ({job_type.value}, attempt {job.attempt})")
                return job

            logger.debug(f"Lost claim race for job {row.id}")

        return None

    @staticmethod
    def _earlier_turn_open():
        earlier = aliased(Job)
        return exists().where(
            earlier.run_id == Job.run_id,
            earlier.type == Job.type,
            earlier.thread_key == Job.thread_key,
            earlier.status.in_(OPEN_STATUSES),
            earlier.created_at < Job.created_at,
        )

    def try_claim(self, job_id) -> bool:
        """Conditionally move one job PENDING -> RUNNING. True if this caller won."""
        updated = (
            self.db.query(Job)
            .filter(Job.id == job_id, Job.status == JobStatus.PENDING)
            .update(
                {
                    Job.status: JobStatus.RUNNING,
                    Job.started_at: datetime.utcnow(),
                    Job.finished_at: None,
                    Job.attempt: Job.attempt + 1,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def finish(
        self,
        job: Job,
        status: JobStatus,
        error: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> bool:
        """Move a RUNNING job to a terminal status. False if it was no longer RUNNING."""
        values = {
            Job.status: status,
            Job.finished_at: datetime.utcnow(),
            Job.last_error: error,
        }
        if result is not None:
            values[Job.result] = result

        updated = (
            self.db.query(Job)
            .filter(Job.id == job.id, Job.status == JobStatus.RUNNING)
            .update(values, synchronize_session=False)
        )
        if commit:
            self.db.commit()

        if updated == 0:
            logger.warning(f"Job {job.id} was not RUNNING, {status.value} not recorded")
            return False
        logger.info(f"Job {job.id} -> {status.value}")
        return True

    def fail_or_retry(
        self,
        job: Job,
        error: str,
        retryable: bool,
        max_attempts: Optional[int] = None,
    ) -> JobStatus:
        """
        Record a failed attempt.

        Transient failures with attempts left go to RETRYING with a backoff
        deadline; everything else is FAILED.
        """
        if max_attempts is None:
            max_attempts = settings.MAX_JOB_ATTEMPTS

        if retryable and job.attempt < max_attempts:
            delay = retry_delay(job.attempt)
            updated = (
                self.db.query(Job)
                .filter(Job.id == job.id, Job.status == JobStatus.RUNNING)
                .update(
                    {
                        Job.status: JobStatus.RETRYING,
                        Job.available_at: datetime.utcnow() + delay,
                        Job.last_error: error,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            if updated:
                logger.warning(
                    f"Job {job.id} retry {job.attempt}/{max_attempts} in {delay.total_seconds():.0f}s: {error}"
                )
                return JobStatus.RETRYING
            self.db.refresh(job)
            logger.warning(f"Job {job.id} was not RUNNING, retry not scheduled (now {job.status.value})")
            return job.status

        self.finish(job, JobStatus.FAILED, error=error)
        return JobStatus.FAILED

    def mark_failed_if_running(self, job_id, error: str) -> bool:
        """Fail a job the handler could not terminalise itself."""
        updated = (
            self.db.query(Job)
            .filter(Job.id == job_id, Job.status == JobStatus.RUNNING)
            .update(
                {
                    Job.status: JobStatus.FAILED,
                    Job.finished_at: datetime.utcnow(),
                    Job.last_error: error,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def requeue_due_retries(self, now: Optional[datetime] = None) -> int:
        """Move RETRYING jobs whose backoff has elapsed back to PENDING."""
        now = now or datetime.utcnow()
        updated = (
            self.db.query(Job)
            .filter(
                Job.status == JobStatus.RETRYING,
                or_(Job.available_at.is_(None), Job.available_at <= now),
            )
            .update(
                {Job.status: JobStatus.PENDING, Job.available_at: None},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if updated:
            logger.info(f"Re-queued {updated} jobs after backoff")
        return updated

    def recover_stale(
        self,
        lease_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[RecoveredJob]:
        """
        Reclaim RUNNING jobs whose claim is older than the lease.

        Jobs with attempts left go back to PENDING, the rest are FAILED. Each
        update is guarded by the observed `started_at`, so a job re-claimed in
        the meantime is left alone.
        """
        if lease_seconds is None:
            lease_seconds = settings.JOB_LEASE_SECONDS
        if max_attempts is None:
            max_attempts = settings.MAX_JOB_ATTEMPTS
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=lease_seconds)

        stale = (
            self.db.query(Job)
            .filter(Job.status == JobStatus.RUNNING, Job.started_at < cutoff)
            .all()
        )

        recovered: List[RecoveredJob] = []
        for job in stale:
            if job.attempt < max_attempts:
                new_status = JobStatus.PENDING
                values = {
                    Job.status: JobStatus.PENDING,
                    Job.started_at: None,
                    Job.last_error: "Lease expired, re-queued",
                }
            else:
                new_status = JobStatus.FAILED
                values = {
                    Job.status: JobStatus.FAILED,
                    Job.finished_at: now,
                    Job.last_error: f"Lease expired after {job.attempt} attempts",
                }

            updated = (
                self.db.query(Job)
                .filter(
                    Job.id == job.id,
                    Job.status == JobStatus.RUNNING,
                    Job.started_at == job.started_at,
                )
                .update(values, synchronize_session=False)
            )
            if updated:
                recovered.append(RecoveredJob(job.id, job.run_id, job.type, new_status))
                logger.warning(f"Recovered abandoned job {job.id} -> {new_status.value}")

        self.db.commit()
        return recovered

    # ------------------------------------------------------------------
    # Run-level operations
    # ------------------------------------------------------------------

    def cancel_pending(self, run_id, commit: bool = True) -> int:
        """Cancel every not-yet-started job of a run."""
        updated = (
            self.db.query(Job)
            .filter(
                Job.run_id == run_id,
                Job.status.in_([JobStatus.PENDING, JobStatus.RETRYING]),
            )
            .update(
                {Job.status: JobStatus.CANCELLED, Job.finished_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        if commit:
            self.db.commit()
        return updated

    def count_by_status(self, run_id, job_type: JobType = JobType.EXECUTE_QUESTION) -> Dict[JobStatus, int]:
        rows = (
            self.db.query(Job.status, func.count(Job.id))
            .filter(Job.run_id == run_id, Job.type == job_type)
            .group_by(Job.status)
            .all()
        )
        counts = {status: 0 for status in JobStatus}
        for status, count in rows:
            counts[JobStatus(status)] = count
        return counts
