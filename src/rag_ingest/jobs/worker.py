"""Celery worker entry point for document processing.

Run with::

    rag-ingest-worker           # worker only
    rag-ingest-worker --beat    # worker plus the stalled-job sweep scheduler

Concurrency, queue and log level come from settings.
"""

from __future__ import annotations

import argparse

from rag_ingest.config import Settings


def worker_argv(settings: Settings, *, beat: bool = False) -> list[str]:
    argv = [
        "worker",
        f"--concurrency={settings.worker_concurrency}",
        f"--queues={settings.queue_name}",
        f"--loglevel={settings.log_level}",
    ]
    if beat:
        argv.append("--beat")
    return argv


def main(argv: list[str] | None = None) -> None:
    from rag_ingest.config import settings
    from rag_ingest.jobs.celery_app import celery_app
    from rag_ingest.logging_config import configure_logging

    parser = argparse.ArgumentParser(description="Document processing worker (Celery)")
    parser.add_argument("--beat", action="store_true", help="Also schedule the stalled-job sweep")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)
    celery_app.worker_main(worker_argv(settings, beat=args.beat))


if __name__ == "__main__":
    main()
