# app/application/use_cases/recommend_products_use_case.py
from typing import List, Optional

import structlog

from app.application.options import RecommendationOptions
from app.application.ports.embedding_port import EmbeddingPort
from app.application.ports.vector_search_port import VectorSearchPort
from app.domain.catalog import to_product_card
from app.domain.models import EmbeddingKind, ProductCard, SearchFilters, SearchHit

log = structlog.get_logger(__name__)


class RecommendProductsUseCase:
    """
    Embeds a free-text query and retrieves the most similar catalog products.
    Every returned product comes from the catalog; nothing is generated.
    """
    def __init__(self, embedding_port: EmbeddingPort, search_port: VectorSearchPort, options: RecommendationOptions):
        self.embedding_port = embedding_port
        self.search_port = search_port
        self.options = options
        log.info(
            "RecommendProductsUseCase initialized",
            embedding_adapter=type(embedding_port).__name__,
            search_adapter=type(search_port).__name__,
            limit=options.limit,
            num_candidates=options.num_candidates,
            min_score=options.min_score,
        )

    async def search(
        self,
        query_text: str,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        num_candidates: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[SearchHit]:
        """
        Raises:
            EmbeddingError: If the query cannot be embedded.
            ValueError: If the filters are malformed.
            VectorSearchError: If the index query fails.
        """
        use_case_log = log.bind(query_len=len(query_text or ""))
        query_vector = await self.embedding_port.embed(query_text, EmbeddingKind.QUERY)
        use_case_log.debug("Query embedded", dimension=len(query_vector))

        hits = await self.search_port.search(
            query_vector,
            filters=filters,
            limit=limit if limit is not None else self.options.limit,
            num_candidates=num_candidates if num_candidates is not None else self.options.num_candidates,
            min_score=min_score if min_score is not None else self.options.min_score,
        )
        use_case_log.info(
            "Catalog search completed",
            hits=len(hits),
            best_score=round(hits[0].score, 4) if hits else None,
        )
        return hits

    async def execute(self, query_text: str, filters: Optional[SearchFilters] = None) -> List[ProductCard]:
        hits = await self.search(query_text, filters=filters)
        return [card for card in (to_product_card(h) for h in hits) if card is not None]
