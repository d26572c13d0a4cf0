"""RAG context assembly and answer generation.

Usage::

    builder = RAGContextBuilder(search)
    context = await builder.build_context("What is the refund window?", organization_id="org-1")
    prompt_text = format_context_for_prompt(context)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from rag_ingest.retrieval.models import RAGContext, SourceReference
from rag_ingest.retrieval.prompts import NO_CONTEXT_ANSWER, build_rag_prompt
from rag_ingest.retrieval.search import SemanticSearch

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"
TRUNCATION_MARKER = "..."


class RAGContextBuilder:
    """Turn top-K search results into a bounded, attributed context.

    Parameters
    ----------
    search:
        Semantic search used to retrieve chunks.
    max_context_chunks:
        Default number of chunks to include.
    min_similarity:
        Default similarity threshold for included chunks.
    """

    def __init__(
        self,
        search: SemanticSearch,
        *,
        max_context_chunks: int = 5,
        min_similarity: float = 0.7,
    ) -> None:
        self._search = search
        self.max_context_chunks = max_context_chunks
        self.min_similarity = min_similarity

    async def build_context(
        self,
        query: str,
        *,
        organization_id: str | None = None,
        document_type: str | None = None,
        max_context_chunks: int | None = None,
        min_similarity: float | None = None,
        include_metadata: bool = True,
    ) -> RAGContext:
        results = await self._search.search(
            query,
            organization_id=organization_id,
            document_type=document_type,
            match_threshold=self.min_similarity if min_similarity is None else min_similarity,
            match_count=max_context_chunks or self.max_context_chunks,
        )

        parts: list[str] = []
        sources: list[SourceReference] = []
        for result in results:
            if include_metadata:
                marker = f"[Document: {result.document_title or result.document_id} ({result.document_type or 'unknown'})]"
                parts.append(f"{marker}\n{result.content}")
            else:
                parts.append(result.content)
            sources.append(
                SourceReference(
                    document_id=result.document_id,
                    title=result.document_title,
                    path=result.document_path,
                    chunk_index=result.chunk_index,
                    similarity=result.similarity,
                )
            )

        logger.info("Built RAG context from %d chunks for query %r", len(results), query[:60])
        return RAGContext(query=query, results=results, context_text=CONTEXT_SEPARATOR.join(parts), sources=sources)


def format_context_for_prompt(
    context: RAGContext,
    *,
    max_length: int = 4000,
    include_sources: bool = True,
) -> str:
    """Render *context* for an LLM prompt.

    The question plus context body is cut from the end to *max_length*
    characters; the enumerated source list is appended after truncation so
    citations survive.
    """
    body = f"Question: {context.query}\n\nContext:\n{context.context_text or '(no relevant context found)'}"
    if len(body) > max_length:
        body = body[: max(0, max_length - len(TRUNCATION_MARKER))].rstrip() + TRUNCATION_MARKER

    if not include_sources or not context.sources:
        return body

    lines = [
        f"{i}. {s.title or s.document_id} (chunk {s.chunk_index if s.chunk_index is not None else '?'}, "
        f"{s.similarity:.0%} similarity)"
        for i, s in enumerate(context.sources, 1)
    ]
    return body + "\n\nSources:\n" + "\n".join(lines)


class RAGAnswer(BaseModel):
    answer: str
    context: RAGContext
    sources: list[SourceReference] = Field(default_factory=list)


class RAGAnswerer:
    """Retrieve context and ask the chat model for a cited answer."""

    def __init__(self, builder: RAGContextBuilder, llm: BaseChatModel, *, max_prompt_chars: int = 4000) -> None:
        self._builder = builder
        self._llm = llm
        self.max_prompt_chars = max_prompt_chars

    async def answer(
        self,
        query: str,
        *,
        organization_id: str | None = None,
        document_type: str | None = None,
    ) -> RAGAnswer:
        context = await self._builder.build_context(
            query, organization_id=organization_id, document_type=document_type
        )
        if not context.results:
            return RAGAnswer(answer=NO_CONTEXT_ANSWER, context=context)

        prompt = build_rag_prompt(format_context_for_prompt(context, max_length=self.max_prompt_chars))
        response = await self._llm.ainvoke(prompt)
        return RAGAnswer(answer=str(response.content), context=context, sources=context.sources)
