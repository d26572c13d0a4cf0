"""Abstract base class for vector-store backends.

Adding a new backend (pgvector, Qdrant …) only requires subclassing
:class:`VectorStoreBase` and implementing the abstract methods.  The
embedding store and semantic search are backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from rag_ingest.retrieval.models import MetadataFilter, VectorRecord


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def upsert(self, records: list[VectorRecord]) -> None:
        """Insert or overwrite *records* keyed by ``record.id``."""
        ...

    @abstractmethod
    def get(self, ids: list[str]) -> list[VectorRecord]:
        """Return the stored records among *ids*; unknown ids are skipped."""
        ...

    @abstractmethod
    def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        """Return the top-*k* results matching *query_embedding*.

        Each result dict **must** contain at least:

        * ``"id"`` – chunk identifier
        * ``"content"`` – the textual content
        * ``"score"`` – cosine similarity in ``[0, 1]`` (higher = more similar)
        * ``"metadata"`` – associated metadata dict

        Results are ordered by score, descending.

        Parameters
        ----------
        query_embedding:
            Dense vector for the query.
        k:
            Number of results to return.
        filters:
            Optional metadata filters applied server-side.
        """
        ...

    @abstractmethod
    def delete(self, ids: list[str]) -> None:
        """Delete records by their IDs."""
        ...

    @abstractmethod
    def delete_where(self, filters: list[MetadataFilter]) -> None:
        """Delete every record matching all *filters*."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...
