import abc
from typing import List, Optional

from app.domain.models import EmbeddingVector, SearchFilters, SearchHit


class VectorSearchError(Exception):
    """Raised when the underlying vector index cannot be queried."""
    pass


class VectorSearchPort(abc.ABC):
    """
    Interface (Port) para la búsqueda por similitud sobre el catálogo de productos.
    """

    @abc.abstractmethod
    async def search(
        self,
        query_vector: EmbeddingVector,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        num_candidates: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[SearchHit]:
        """
        Returns the catalog products most similar to `query_vector`, most similar first.

        Args:
            query_vector: Normalized query embedding.
            filters: Metadata conjunction applied by the index.
            limit: Maximum number of hits returned.
            num_candidates: Approximate candidate pool requested from the index.
            min_score: Hits scoring below this value are dropped.

        Raises:
            ValueError: If the filters are malformed (e.g. invalid category id).
            VectorSearchError: If the index query fails.
        """
        raise NotImplementedError
