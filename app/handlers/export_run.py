"""Export handler: write a run's responses to a CSV file."""

import logging
from datetime import datetime

from app.config import settings
from app.handlers.base import BaseHandler
from app.models.job import Job, JobStatus, JobType
from app.models.run import SurveyRun
from app.schemas.payloads import ExportRunPayload
from app.services.export import load_export_rows, render_csv, write_export

logger = logging.getLogger(__name__)


class ExportRunHandler(BaseHandler):
    job_type = JobType.EXPORT_RUN
    payload_model = ExportRunPayload

    def _run(self, job: Job, payload: ExportRunPayload) -> JobStatus:
        run = self.db.get(SurveyRun, payload.run_id)
        if run is None:
            self.store.finish(job, JobStatus.FAILED, error=f"Run {payload.run_id} not found")
            return JobStatus.FAILED

        rows = load_export_rows(self.db, run.id)
        timestamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S%f")
        path = write_export(render_csv(rows), settings.EXPORT_DIR, run.id, timestamp)

        self.store.finish(job, JobStatus.SUCCEEDED, result={"path": str(path), "rows": len(rows)})
        return JobStatus.SUCCEEDED
