from __future__ import annotations

from celery import Celery

from statement_intake.core.config import settings


def make_celery() -> Celery:
    app = Celery("statement_intake", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment in {"dev", "test"},
        task_eager_propagates=True,
        task_track_started=True,
        beat_schedule={
            "expire-stale-uploaded-files": {
                "task": "expire_stale_uploaded_files",
                "schedule": 300.0,
            },
        },
    )
    app.autodiscover_tasks(["statement_intake.worker.tasks"])
    return app


celery_app = make_celery()
