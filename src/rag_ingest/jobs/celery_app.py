"""Celery application for document processing.

Broker and result backend default to ``settings.redis_url``.  Tasks are
acknowledged late so a job whose worker dies mid-run is redelivered, and
each worker process prefetches one message at a time.
"""

from __future__ import annotations

from celery import Celery

from rag_ingest.config import settings

celery_app = Celery(
    "rag_ingest",
    broker=settings.celery_broker_url or settings.redis_url,
    backend=settings.celery_result_backend or settings.redis_url,
    include=["rag_ingest.jobs.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    task_default_queue=settings.queue_name,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.worker_concurrency,
    worker_hijack_root_logger=False,
    # Redelivery of unacknowledged messages must outlast the longest backoff.
    broker_transport_options={"visibility_timeout": max(3600, settings.job_backoff_max_seconds * 2)},
    beat_schedule={
        "reclaim-stalled-jobs": {
            "task": "rag_ingest.reclaim_stalled_jobs",
            "schedule": settings.job_reclaim_interval,
        },
    },
)
