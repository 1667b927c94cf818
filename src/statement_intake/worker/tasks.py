from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import statement_intake.models  # noqa: F401
# isort: on

import time
import uuid

from statement_intake.core.errors import AlreadyProcessing
from statement_intake.core.logging import get_logger, log_context, log_event, log_exception, monotonic_ms
from statement_intake.worker.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="parse_uploaded_file", bind=True)
def parse_uploaded_file_task(self, file_id: str) -> str:
    """Parse one stored upload. Returns the outcome code for the result backend."""
    from statement_intake.core.db import session_scope
    from statement_intake.modules.extraction.service import ParseError, parse_file

    task_id = getattr(self.request, "id", None)
    start = time.monotonic()
    with log_context(celery_task_id=task_id, task_name="parse_uploaded_file", file_id=file_id):
        log_event(logger, "celery.task.start")
        try:
            with session_scope() as session:
                result = parse_file(session, uuid.UUID(file_id))
        except AlreadyProcessing:
            # Redelivered while another worker holds the lease.
            log_event(logger, "celery.task.skipped", reason="already_processing")
            return "already_processing"
        except Exception:
            log_exception(logger, "celery.task.error", duration_ms=monotonic_ms(start))
            raise

        outcome = result.code if isinstance(result, ParseError) else "completed"
        log_event(logger, "celery.task.finish", outcome=outcome, duration_ms=monotonic_ms(start))
        return outcome


@celery_app.task(name="expire_stale_uploaded_files", bind=True)
def expire_stale_uploaded_files_task(self) -> int:
    from statement_intake.core.db import session_scope
    from statement_intake.modules.files.service import expire_stale_processing

    task_id = getattr(self.request, "id", None)
    start = time.monotonic()
    with log_context(celery_task_id=task_id, task_name="expire_stale_uploaded_files"):
        try:
            with session_scope() as session:
                expired = expire_stale_processing(session)
        except Exception:
            log_exception(logger, "celery.task.error", duration_ms=monotonic_ms(start))
            raise
        log_event(
            logger, "celery.task.finish", expired=len(expired), duration_ms=monotonic_ms(start)
        )
        return len(expired)
