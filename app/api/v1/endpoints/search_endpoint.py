# app/api/v1/endpoints/search_endpoint.py
import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from app.api.v1 import schemas
from app.application.ports.embedding_port import EmbeddingError
from app.application.ports.vector_search_port import VectorSearchError
from app.application.use_cases.recommend_products_use_case import RecommendProductsUseCase
from app.dependencies import get_recommend_products_use_case

router = APIRouter()
log = structlog.get_logger(__name__)


@router.post(
    "/products/search",
    response_model=schemas.ProductSearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Semantic product search",
    description="Embeds the query and returns the most similar catalog products, optionally filtered by species, use case, tags and categories.",
)
async def search_products_endpoint(
    request_body: schemas.ProductSearchRequest,
    use_case: RecommendProductsUseCase = Depends(get_recommend_products_use_case),
):
    started = time.perf_counter()
    endpoint_log = log.bind(query_len=len(request_body.query), limit=request_body.limit)
    endpoint_log.info("Received product search request")

    try:
        hits = await use_case.search(
            request_body.query,
            filters=request_body.to_filters(),
            limit=request_body.limit,
            num_candidates=request_body.num_candidates,
            min_score=request_body.min_score,
        )
    except ValueError as ve:
        endpoint_log.warning("Invalid search filters", error=str(ve))
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(ve))
    except EmbeddingError as ee:
        endpoint_log.error("Embedding provider error during search", error=str(ee))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Embedding provider failed.")
    except VectorSearchError as vse:
        endpoint_log.error("Vector search unavailable", error=str(vse))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Product search is unavailable.")

    took_ms = int((time.perf_counter() - started) * 1000)
    endpoint_log.info("Product search completed", hits=len(hits), took_ms=took_ms)
    return schemas.ProductSearchResponse(hits=hits, took_ms=took_ms)
