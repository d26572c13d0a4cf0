"""Prompt templates for answering questions from retrieved document context."""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

SYSTEM_PROMPT = """\
You are a helpful assistant that answers questions about an organization's
documents using **only** the provided context.

Rules:
1. Cite the supporting source for each factual claim with its number, e.g. [1].
2. If the context does not contain enough information, say so honestly;
   do NOT fabricate information.
3. Answer in the same language as the question.
4. Be concise but thorough.
"""

NO_CONTEXT_ANSWER = (
    "I could not find relevant information in the available documents to answer this question."
)


def build_rag_prompt(formatted_context: str) -> list[BaseMessage]:
    """Assemble the prompt messages for a retrieval-augmented generation call.

    Parameters
    ----------
    formatted_context:
        Output of :func:`~rag_ingest.retrieval.rag.format_context_for_prompt`,
        which already contains the question, context and source list.

    Returns
    -------
    list[BaseMessage]
        A list of LangChain message objects ready for ``.ainvoke()``.
    """
    return [
        SystemMessage(content=SYSTEM_PROMPT),
        HumanMessage(content=f"{formatted_context}\n\nProvide an answer based on the context above."),
    ]
