# File: app/infrastructure/vector_search/mongo_vector_search_adapter.py
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from app.application.options import VectorSearchOptions
from app.application.ports.vector_search_port import VectorSearchError, VectorSearchPort
from app.core.metrics import VECTOR_SEARCH_DURATION_SECONDS, VECTOR_SEARCH_HITS
from app.domain.catalog import UNTITLED_PRODUCT, build_badges
from app.domain.models import EmbeddingVector, SearchFilters, SearchHit

log = structlog.get_logger(__name__)

PROJECTED_FIELDS = (
    "wasteName", "description", "slug", "imageUrls", "averageRating",
    "tags", "species", "use_cases", "stock", "categories",
)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


class MongoVectorSearchAdapter(VectorSearchPort):
    """
    Búsqueda semántica sobre la colección de productos usando la etapa
    `$vectorSearch` de MongoDB Atlas. Solo lectura.
    """

    def __init__(self, collection: Any, options: VectorSearchOptions):
        self._collection = collection
        self._options = options
        log.info(
            "MongoVectorSearchAdapter initialized",
            collection=getattr(collection, "name", None),
            index=options.index_name,
            path=options.vector_path,
        )

    def build_filter(self, filters: Optional[SearchFilters]) -> Dict[str, Any]:
        if filters is None:
            return {}
        query: Dict[str, Any] = {}
        if filters.species:
            query["species"] = filters.species
        if filters.use_case:
            query["use_cases"] = filters.use_case
        if filters.tags:
            query["tags"] = {"$in": list(filters.tags)}
        if filters.categories:
            try:
                query["categories"] = {"$in": [ObjectId(c) for c in filters.categories]}
            except (InvalidId, TypeError) as e:
                raise ValueError(f"Invalid category id in filters: {e}") from e
        return query

    def build_pipeline(
        self,
        query_vector: EmbeddingVector,
        filters: Optional[SearchFilters],
        limit: int,
        num_candidates: int,
    ) -> List[Dict[str, Any]]:
        vector_stage: Dict[str, Any] = {
            "index": self._options.index_name,
            "path": self._options.vector_path,
            "queryVector": list(query_vector),
            "numCandidates": max(num_candidates, limit),
            "limit": limit,
        }
        match = self.build_filter(filters)
        if match:
            vector_stage["filter"] = match

        project: Dict[str, Any] = {field: 1 for field in PROJECTED_FIELDS}
        project["score"] = {"$meta": "vectorSearchScore"}

        return [
            {"$vectorSearch": vector_stage},
            {"$project": project},
            {
                "$lookup": {
                    "from": self._options.unit_prices_collection,
                    "let": {"product_id": "$_id"},
                    "pipeline": [
                        {"$match": {"$expr": {"$eq": ["$farmWasteId", "$$product_id"]}, "isBaseUnit": True}},
                        {"$limit": 1},
                        {"$project": {"_id": 0, "pricePerUnit": 1, "unit": 1}},
                    ],
                    "as": "baseUnit",
                }
            },
        ]

    def to_hit(self, row: Dict[str, Any]) -> SearchHit:
        slug = row["slug"]
        species = list(row.get("species") or [])
        use_cases = list(row.get("use_cases") or [])
        images = row.get("imageUrls") or []
        base_unit = (row.get("baseUnit") or [{}])[0]
        stock = _as_number(row.get("stock"))

        return SearchHit(
            id=str(row.get("_id") or slug),
            title=row.get("wasteName") or UNTITLED_PRODUCT,
            short_desc=row.get("description") or "",
            slug=slug,
            url=f"{self._options.product_url_prefix}{slug}",
            image=images[0] if images else None,
            rating=_as_number(row.get("averageRating")),
            stock=int(stock) if stock is not None else None,
            score=float(row.get("score") or 0.0),
            badges=build_badges(species, use_cases),
            species=species,
            price=_as_number(base_unit.get("pricePerUnit")),
            unit=base_unit.get("unit"),
        )

    async def search(
        self,
        query_vector: EmbeddingVector,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        num_candidates: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[SearchHit]:
        limit = limit if limit is not None else self._options.default_limit
        num_candidates = num_candidates if num_candidates is not None else self._options.num_candidates
        min_score = min_score if min_score is not None else self._options.min_score

        search_log = log.bind(limit=limit, num_candidates=num_candidates, min_score=min_score)
        if limit <= 0:
            return []

        pipeline = self.build_pipeline(query_vector, filters, limit, num_candidates)
        try:
            with VECTOR_SEARCH_DURATION_SECONDS.time():
                cursor = await self._collection.aggregate(pipeline)
                rows = await cursor.to_list(length=None)
        except PyMongoError as e:
            search_log.error("Vector search aggregation failed", error=str(e))
            raise VectorSearchError(f"Vector search failed: {e}") from e

        kept = [
            row for row in rows
            if (row.get("score") or 0.0) >= min_score and row.get("slug")
        ]
        # sorted() is stable: equal scores keep index order
        kept = sorted(kept, key=lambda row: row.get("score") or 0.0, reverse=True)[:limit]
        hits = [self.to_hit(row) for row in kept]

        VECTOR_SEARCH_HITS.observe(len(hits))
        search_log.debug(
            "Vector search completed",
            raw_rows=len(rows),
            hits=len(hits),
            best_score=hits[0].score if hits else None,
        )
        return hits
