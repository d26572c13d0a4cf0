"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding provider
    embedding_provider: str = Field(default="openai", description="'openai' or 'huggingface'")
    openai_api_key: str = Field(default="", description="Global OpenAI key, used when an organization has none")
    openai_base_url: str = ""
    embedding_model: str = "text-embedding-3-small"
    huggingface_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_batch_size: int = 100
    embedding_max_retries: int = 3
    encryption_key: str = Field(
        default="",
        description=(
            "Secret used to decrypt organization API keys. Either 64 hex chars "
            "(a raw 256-bit key) or any passphrase, which is stretched with PBKDF2."
        ),
    )

    # LLM
    llm_model_name: str = Field(default="gpt-4o-mini", description="Chat model used for RAG answers")
    llm_base_url: str = ""

    # Redis / conversion cache
    redis_url: str = "redis://localhost:6379/0"
    cache_backend: str = Field(default="redis", description="'redis', 'memory' or 'none'")
    conversion_cache_ttl: int = 30 * 24 * 60 * 60

    # Vector store
    vector_store: str = Field(default="chroma", description="'chroma' or 'memory'")
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "document_chunks"

    # Chunking
    chunk_size: int = 500
    chunk_overlap: int = 50
    chunking_strategy: str = "paragraph"

    # Queue / worker (Celery)
    queue_backend: str = Field(default="redis", description="'redis' (Celery + Redis ledger) or 'memory' (in-process)")
    queue_name: str = "document-processing"
    celery_broker_url: str = Field(default="", description="Defaults to redis_url")
    celery_result_backend: str = Field(default="", description="Defaults to redis_url")
    job_max_attempts: int = 3
    job_backoff_seconds: float = 2.0
    job_backoff_max_seconds: int = 600
    job_lease_seconds: float = Field(default=900.0, description="Processing lease renewed by every progress report")
    job_reclaim_interval: float = Field(default=60.0, description="Seconds between stalled-job sweeps (celery beat)")
    worker_concurrency: int = 3
    worker_rate_limit: str = Field(default="10/m", description="Celery rate limit for job starts, per worker")
    inline_autorun: bool = Field(default=True, description="Memory mode: run dispatched jobs in the background")

    # Search / RAG
    match_threshold: float = 0.7
    match_count: int = 10
    rag_max_context_chunks: int = 5
    rag_prompt_max_chars: int = 4000

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton, read by the entry points (API app, worker) when wiring services.
settings = Settings()
