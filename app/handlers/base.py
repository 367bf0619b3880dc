"""Base handler with payload validation and failure containment."""

import logging
from typing import Any, Callable, Optional, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from app.models.job import Job, JobStatus, JobType
from app.services.job_store import JobStore
from app.services.llm_client import get_provider

logger = logging.getLogger(__name__)


class BaseHandler:
    """Base class for job handlers.

    A handler owns the terminal status of the job it is given. Nothing it
    raises reaches the worker loop: unexpected errors roll back, fail the job
    and are logged.
    """

    job_type: JobType
    payload_model: Type[BaseModel]

    def __init__(self, db: Session, provider_resolver: Callable[[str], Any] = get_provider):
        """Initialize handler."""
        self.db = db
        self.provider_resolver = provider_resolver
        self.store = JobStore(db)

    def execute(self, job: Job) -> JobStatus:
        """
        Validate the payload and run the handler.

        Args:
            job: A job this worker has claimed (status RUNNING)

        Returns:
            The job's status after handling
        """
        name = self.__class__.__name__
        logger.info(f"Handler {name} processing job {job.id} (attempt {job.attempt})")

        # Refresh session to see recently committed data
        self.db.expire_all()

        try:
            payload = self.payload_model.model_validate(job.payload or {})
        except ValidationError as e:
            logger.error(f"Handler {name} rejected payload of job {job.id}: {e}")
            self.store.finish(job, JobStatus.FAILED, error=f"Invalid payload: {e}")
            self._on_failed(job, None)
            return JobStatus.FAILED

        try:
            return self._run(job, payload)
        except Exception as e:
            logger.error(f"Handler {name} error on job {job.id}: {e}", exc_info=True)
            self.db.rollback()
            self.store.finish(job, JobStatus.FAILED, error=str(e) or e.__class__.__name__)
            self._on_failed(job, payload)
            return JobStatus.FAILED

    def _run(self, job: Job, payload: Any) -> JobStatus:
        """
        Run the handler logic (to be implemented by subclasses).

        Must leave the job in a terminal or RETRYING status.
        """
        raise NotImplementedError

    def _on_failed(self, job: Job, payload: Optional[BaseModel]) -> None:
        """Hook called after the base class failed the job."""
