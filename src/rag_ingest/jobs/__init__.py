"""Durable document-processing jobs: ledger, dispatch, Celery tasks and worker."""
