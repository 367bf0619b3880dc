"""Background worker for processing jobs."""

import logging
import signal
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Mapping, Optional, Set, Type

import sqlalchemy
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.database import SessionLocal
from app.handlers.analyze_response import AnalyzeResponseHandler
from app.handlers.base import BaseHandler
from app.handlers.execute_question import ExecuteQuestionHandler
from app.handlers.export_run import ExportRunHandler
from app.models.job import Job, JobStatus, JobType
from app.services.completion import check_run_completion
from app.services.job_store import JobStore
from app.services.llm_client import get_provider

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Handler registry
HANDLERS: Dict[JobType, Type[BaseHandler]] = {
    JobType.EXECUTE_QUESTION: ExecuteQuestionHandler,
    JobType.ANALYZE_RESPONSE: AnalyzeResponseHandler,
    JobType.EXPORT_RUN: ExportRunHandler,
}


class JobPool:
    """
    Bounded thread pool for one job type.

    A slot is reserved before claiming and released when the handler
    finishes, so at most `size` jobs of this type run at once.
    """

    def __init__(self, job_type: JobType, size: int):
        if size < 1:
            raise ValueError(f"Pool size for {job_type.value} must be at least 1")
        self.job_type = job_type
        self.size = size
        self._slots = threading.BoundedSemaphore(size)
        self._executor = ThreadPoolExecutor(max_workers=size, thread_name_prefix=job_type.value.lower())
        self._lock = threading.Lock()
        self._active: Set = set()
        self._futures: Set[Future] = set()

    def try_reserve(self) -> bool:
        return self._slots.acquire(blocking=False)

    def release(self) -> None:
        self._slots.release()

    @property
    def active_ids(self) -> frozenset:
        """Job ids this pool is currently running."""
        with self._lock:
            return frozenset(self._active)

    def submit(self, job_id, fn: Callable) -> Future:
        """Run `fn(job_id)` in the pool. The caller must hold a reserved slot."""
        with self._lock:
            self._active.add(job_id)
        future = self._executor.submit(fn, job_id)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(lambda f: self._done(job_id, f))
        return future

    def _done(self, job_id, future: Future) -> None:
        with self._lock:
            self._active.discard(job_id)
            self._futures.discard(future)
        self._slots.release()

        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Job {job_id} raised in {self.job_type.value} pool: {future.exception()}")

    def shutdown(self, timeout: Optional[float]) -> int:
        """
        Stop accepting work and wait for running jobs.

        Returns:
            Number of jobs still running when the timeout expired
        """
        with self._lock:
            pending = set(self._futures)
        self._executor.shutdown(wait=False)
        _, not_done = wait(pending, timeout=timeout)
        return len(not_done)


class Worker:
    """Claims jobs from the store and runs them in per-type pools."""

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        provider_resolver: Callable = get_provider,
        poll_interval: Optional[float] = None,
        concurrency: Optional[Mapping[JobType, int]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """Initialize worker."""
        self.session_factory = session_factory
        self.provider_resolver = provider_resolver
        self.poll_interval = settings.WORKER_POLL_INTERVAL if poll_interval is None else poll_interval
        self.stop_event = stop_event or threading.Event()
        self.handlers = dict(HANDLERS)

        sizes = {
            JobType.EXECUTE_QUESTION: settings.EXECUTE_CONCURRENCY,
            JobType.ANALYZE_RESPONSE: settings.ANALYZE_CONCURRENCY,
            JobType.EXPORT_RUN: settings.EXPORT_CONCURRENCY,
        }
        sizes.update(concurrency or {})
        self.pools: Dict[JobType, JobPool] = {job_type: JobPool(job_type, size) for job_type, size in sizes.items()}

        self._last_sweep: Optional[float] = None
        self._stopped = False

    def run(self, wait_for_db: float = 60.0) -> None:
        """Main worker loop. Returns after `stop_event` is set and pools have drained."""
        logger.info("Worker started - waiting for database to be ready...")
        self.wait_for_database(wait_for_db)

        while not self.stop_event.is_set():
            try:
                claimed = self.poll_once()
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                claimed = 0

            if not claimed:
                self.stop_event.wait(self.poll_interval)

        self.shutdown(settings.SHUTDOWN_TIMEOUT)

    def wait_for_database(self, max_wait: float) -> bool:
        """Block until the jobs table is queryable, up to `max_wait` seconds."""
        waited = 0.0
        while waited < max_wait and not self.stop_event.is_set():
            db = self.session_factory()
            try:
                db.execute(sqlalchemy.text("SELECT 1 FROM jobs LIMIT 1"))
                logger.info("Database is ready, starting worker loop")
                return True
            except SQLAlchemyError as e:
                logger.info(f"Waiting for database... ({waited:.0f}s): {e.__class__.__name__}")
            finally:
                db.close()
            self.stop_event.wait(2)
            waited += 2

        logger.error(f"Database not ready after {max_wait:.0f} seconds, starting anyway...")
        return False

    def poll_once(self) -> int:
        """
        One scheduling pass: housekeeping, then at most one claim per job type.

        Returns:
            Number of jobs claimed and dispatched
        """
        db = self.session_factory()
        try:
            self._housekeeping(db)

            store = JobStore(db)
            claimed = 0
            for job_type, pool in self.pools.items():
                if self.stop_event.is_set():
                    break
                if not pool.try_reserve():
                    continue

                try:
                    job = store.claim_next(job_type, exclude_ids=pool.active_ids)
                except Exception:
                    pool.release()
                    raise

                if job is None:
                    pool.release()
                    continue

                pool.submit(job.id, self.process_job)
                claimed += 1
            return claimed
        finally:
            db.close()

    def _housekeeping(self, db) -> None:
        store = JobStore(db)
        store.requeue_due_retries()

        now = time.monotonic()
        if self._last_sweep is not None and now - self._last_sweep < settings.STALE_SWEEP_INTERVAL:
            return
        self._last_sweep = now

        for recovered in store.recover_stale():
            if recovered.type == JobType.EXECUTE_QUESTION and recovered.status == JobStatus.FAILED:
                check_run_completion(db, recovered.run_id)

    def process_job(self, job_id) -> Optional[JobStatus]:
        """Run the handler for one claimed job in its own session."""
        db = self.session_factory()
        try:
            job = db.get(Job, job_id)
            if job is None:
                logger.warning(f"Claimed job {job_id} disappeared")
                return None

            handler_class = self.handlers.get(job.type)
            if handler_class is None:
                JobStore(db).mark_failed_if_running(job_id, f"Unknown job type: {job.type}")
                return JobStatus.FAILED

            handler = handler_class(db, provider_resolver=self.provider_resolver)
            status = handler.execute(job)
            logger.info(f"Job {job_id} finished with status {status.value}")
            return status

        except Exception as e:
            logger.error(f"Job {job_id} crashed: {e}", exc_info=True)
            db.rollback()
            JobStore(db).mark_failed_if_running(job_id, str(e))
            return JobStatus.FAILED

        finally:
            db.close()

    def shutdown(self, timeout: Optional[float] = None) -> int:
        """
        Stop claiming and wait for in-flight jobs up to one shared deadline.

        Jobs still running at the deadline stay RUNNING and are recovered by
        the stale sweep of a later worker.

        Returns:
            Number of jobs abandoned
        """
        self.stop_event.set()
        if self._stopped:
            return 0
        self._stopped = True

        if timeout is None:
            timeout = settings.SHUTDOWN_TIMEOUT
        deadline = time.monotonic() + timeout
        logger.info(f"Worker shutting down, waiting up to {timeout:.0f}s for running jobs")

        abandoned = 0
        for pool in self.pools.values():
            abandoned += pool.shutdown(max(deadline - time.monotonic(), 0))

        if abandoned:
            logger.warning(f"Abandoned {abandoned} running jobs at shutdown")
        else:
            logger.info("Worker stopped cleanly")
        return abandoned


def worker_loop(stop_event=None):
    """Run worker loop (for use as background thread).

    Args:
        stop_event: Optional threading.Event to signal worker to stop
    """
    worker = Worker(stop_event=stop_event)
    worker.run()


def main():
    """Entry point for standalone worker."""
    worker = Worker()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping worker")
        worker.stop_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    worker.run()


if __name__ == "__main__":
    main()
