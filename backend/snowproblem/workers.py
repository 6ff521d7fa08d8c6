from celery import Celery
from .config import settings

celery_app = Celery(
    "snowproblem",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["snowproblem.tasks"]
)

celery_app.conf.update(
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    broker_transport_options={"visibility_timeout": 3600},
    beat_schedule={
        "expire-stale-jobs": {
            "task": "snowproblem.tasks.expire_stale_jobs_task",
            "schedule": float(settings.BID_EXPIRY_SWEEP_SECONDS),
        },
    },
)
