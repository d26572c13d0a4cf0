"""FastAPI application exposing document ingestion, queue control and search."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rag_ingest import __version__
from rag_ingest.exceptions import (
    ConversionFailed,
    DocumentNotFound,
    EmbeddingFailed,
    InvalidOptions,
    JobNotFound,
    MissingCredential,
    PipelineError,
    RateLimited,
    UnsupportedFormat,
)
from rag_ingest.ingestion.models import ChunkingStrategy
from rag_ingest.jobs.models import DocumentJobData, JobStatusView, QueueStats, RetrySummary
from rag_ingest.retrieval.models import SemanticSearchResult, SourceReference
from rag_ingest.wiring import Services, build_services

logger = logging.getLogger(__name__)

_STATUS_CODES: list[tuple[type[PipelineError], int]] = [
    (UnsupportedFormat, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE),
    (ConversionFailed, 422),
    (InvalidOptions, 422),
    (DocumentNotFound, status.HTTP_404_NOT_FOUND),
    (JobNotFound, status.HTTP_404_NOT_FOUND),
    (RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
    (MissingCredential, status.HTTP_503_SERVICE_UNAVAILABLE),
    (EmbeddingFailed, status.HTTP_502_BAD_GATEWAY),
]


def status_code_for(error: PipelineError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# ── Request / Response schemas ────────────────────────────────────────
class UploadResponse(BaseModel):
    document_id: str
    title: str
    document_type: str
    job: JobStatusView | None = None
    from_cache: bool = False
    warnings: list[str] = []


class ProcessRequest(BaseModel):
    """Optional chunking overrides for a (re)processing job."""

    organization_id: str | None = None
    chunking_strategy: ChunkingStrategy | None = None
    chunk_size: int | None = Field(default=None, gt=0)
    chunk_overlap: int | None = Field(default=None, ge=0)


class RetryRequest(BaseModel):
    job_id: str | None = None
    auto: bool = False
    max_retries: int = 5
    max_jobs: int = 10


class RetryResponse(BaseModel):
    success: bool
    message: str
    summary: RetrySummary | None = None


class SearchRequest(BaseModel):
    query: str
    organization_id: str | None = None
    document_type: str | None = None
    match_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    match_count: int | None = Field(default=None, gt=0)
    grouped: bool = False


class SearchResponse(BaseModel):
    results: list[SemanticSearchResult] = []
    groups: dict[str, list[SemanticSearchResult]] | None = None
    count: int = 0


class RAGQueryRequest(BaseModel):
    """Incoming question from the user."""

    query: str
    organization_id: str | None = None
    document_type: str | None = None


class RAGQueryResponse(BaseModel):
    """Answer plus the chunks it was grounded on."""

    answer: str
    sources: list[SourceReference] = []
    context_chunks: int = 0


def create_app(services: Services | None = None) -> FastAPI:
    """Build the API.  Without *services*, they are wired from settings on first request."""
    app = FastAPI(
        title="RAG Ingest API",
        version=__version__,
        description="Document ingestion, vectorization queue and semantic search.",
    )
    app.state.services = services

    def get_services() -> Services:
        if app.state.services is None:
            from rag_ingest.config import settings

            app.state.services = build_services(settings)
        return app.state.services

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        code = status_code_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=code, content={"error": exc.message, "details": exc.details})

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health(services: Services = Depends(get_services)) -> JSONResponse:
        """Liveness plus vector-store reachability; 503 while the store is down."""
        healthy = await asyncio.to_thread(services.vector_store.health_check)
        if healthy:
            return JSONResponse({"status": "ok", "vector_store": "ok"})
        return JSONResponse(
            {"status": "degraded", "vector_store": "unavailable"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    @app.post("/documents/upload", status_code=status.HTTP_201_CREATED, response_model=UploadResponse)
    async def upload_document(
        file: UploadFile = File(...),
        organization_id: str = Form(...),
        title: str | None = Form(None),
        check_duplicates: bool = Form(True),
        chunking_strategy: ChunkingStrategy | None = Form(None),
        services: Services = Depends(get_services),
    ) -> Any:
        """Convert, register and enqueue an uploaded file."""
        data = await file.read()
        result = await services.ingestion.ingest(
            data,
            filename=file.filename or "upload",
            organization_id=organization_id,
            mime_type=file.content_type,
            title=title,
            check_duplicates=check_duplicates,
            chunking_strategy=chunking_strategy,
        )
        if result.document is None:
            duplicate = result.duplicate
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content={
                    "error": duplicate.message if duplicate else "Duplicate document",
                    "duplicate": duplicate.model_dump() if duplicate else None,
                },
            )
        return UploadResponse(
            document_id=result.document.id,
            title=result.document.title,
            document_type=result.document.document_type,
            job=result.job,
            from_cache=result.from_cache,
            warnings=result.warnings,
        )

    @app.post(
        "/documents/{document_id}/process",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=JobStatusView,
    )
    async def process_document(
        document_id: str,
        request: ProcessRequest | None = None,
        services: Services = Depends(get_services),
    ) -> JobStatusView:
        """(Re)enqueue processing for an existing document."""
        request = request or ProcessRequest()
        document = await services.repository.get_document(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        job = await services.queue.enqueue(
            DocumentJobData(
                document_id=document_id,
                organization_id=request.organization_id or document.organization_id,
                chunking_strategy=request.chunking_strategy,
                chunk_size=request.chunk_size,
                chunk_overlap=request.chunk_overlap,
            )
        )
        return job.status_view()

    @app.get("/documents/{document_id}/progress", response_model=JobStatusView)
    async def document_progress(document_id: str, services: Services = Depends(get_services)) -> JobStatusView:
        """Polled by clients while a document is processing."""
        return await services.queue.get_status(document_id)

    @app.get("/queue/failed")
    async def failed_jobs(limit: int = 100, services: Services = Depends(get_services)) -> dict[str, Any]:
        jobs = await services.queue.failed_jobs(limit=limit)
        return {"failed_jobs": [j.model_dump(mode="json") for j in jobs], "count": len(jobs)}

    @app.post("/queue/retry", response_model=RetryResponse)
    async def retry_jobs(request: RetryRequest, services: Services = Depends(get_services)) -> RetryResponse:
        """Retry one job by id, or sweep failed jobs with ``auto``."""
        if request.job_id:
            retried = await services.queue.retry(request.job_id)
            message = f"Job {request.job_id} scheduled for retry" if retried else f"Job {request.job_id} is not failed"
            return RetryResponse(success=retried, message=message)
        if request.auto:
            summary = await services.queue.retry_failed(max_retries=request.max_retries, max_jobs=request.max_jobs)
            return RetryResponse(
                success=True,
                message=f"Retried {summary.retried} jobs, {summary.skipped} skipped, {summary.errors} errors",
                summary=summary,
            )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provide job_id or set auto=true")

    @app.get("/queue/stats", response_model=QueueStats)
    async def queue_stats(services: Services = Depends(get_services)) -> QueueStats:
        return await services.queue.stats()

    @app.post("/search/semantic", response_model=SearchResponse)
    async def semantic_search(request: SearchRequest, services: Services = Depends(get_services)) -> SearchResponse:
        options = {
            "organization_id": request.organization_id,
            "document_type": request.document_type,
            "match_threshold": request.match_threshold,
            "match_count": request.match_count,
        }
        if request.grouped:
            groups = await services.search.search_grouped(request.query, **options)
            return SearchResponse(groups=groups, count=sum(len(g) for g in groups.values()))
        results = await services.search.search(request.query, **options)
        return SearchResponse(results=results, count=len(results))

    @app.post("/rag/query", response_model=RAGQueryResponse)
    async def rag_query(request: RAGQueryRequest, services: Services = Depends(get_services)) -> RAGQueryResponse:
        """Answer a question from the organization's documents."""
        answer = await services.answerer.answer(
            request.query, organization_id=request.organization_id, document_type=request.document_type
        )
        return RAGQueryResponse(
            answer=answer.answer, sources=answer.sources, context_chunks=len(answer.context.results)
        )

    @app.get("/metrics/ingestion")
    async def ingestion_metrics(services: Services = Depends(get_services)) -> dict[str, Any]:
        snapshot = services.metrics.snapshot()
        snapshot["queue"] = (await services.queue.stats()).model_dump()
        return snapshot

    return app


app = create_app()


def main() -> None:
    """Serve the API with uvicorn using host, port and log level from settings."""
    from rag_ingest.config import settings
    from rag_ingest.logging_config import configure_logging

    configure_logging(settings.log_level)
    uvicorn.run("rag_ingest.serving.app:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
