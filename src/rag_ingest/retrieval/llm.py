"""LLM initialisation: single place to swap providers.

Supports two modes:

1. **OpenAI cloud** (default): set ``OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint**: set ``LLM_BASE_URL`` (vLLM, Ollama,
   a gateway …); ``ChatOpenAI`` works unchanged against it.
"""

from __future__ import annotations

import logging
from typing import Any

from langchain_openai import ChatOpenAI

from rag_ingest.config import Settings

logger = logging.getLogger(__name__)


def get_llm(settings: Settings, *, api_key: str | None = None, temperature: float = 0.0) -> ChatOpenAI:
    """Return the configured chat model.

    When ``settings.llm_base_url`` is set the client is pointed at that
    OpenAI-compatible endpoint.  Self-hosted endpoints usually ignore the
    key, so a dummy ``"EMPTY"`` value is used when none is configured.
    """
    kwargs: dict[str, Any] = {
        "model": settings.llm_model_name,
        "temperature": temperature,
    }

    key = api_key or settings.openai_api_key
    if settings.llm_base_url:
        logger.info("Using OpenAI-compatible LLM endpoint: %s", settings.llm_base_url)
        kwargs["base_url"] = settings.llm_base_url
        # LangChain requires a non-empty value.
        kwargs["api_key"] = key or "EMPTY"
    else:
        kwargs["api_key"] = key

    return ChatOpenAI(**kwargs)
