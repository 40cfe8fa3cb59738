# app/api/v1/endpoints/chat_endpoint.py
import time
from typing import AsyncIterator, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from app.api.v1 import schemas
from app.api.v1.sse import SSE_HEADERS, SSE_MEDIA_TYPE, encode_event
from app.application.use_cases.chat_relay_use_case import ChatRelaySession, ChatRelaySessionFactory
from app.application.use_cases.recommend_products_use_case import RecommendProductsUseCase
from app.dependencies import get_chat_relay_factory, get_recommend_products_use_case
from app.domain.intent import wants_recommendations

router = APIRouter()
log = structlog.get_logger(__name__)

MISSING_TEXT_MESSAGE = "query atau messages (dengan user message terakhir) wajib ada."
RECOMMENDATION_FAILED_MESSAGE = "Gagal membuat rekomendasi."


async def _encode_stream(session: ChatRelaySession) -> AsyncIterator[bytes]:
    try:
        async for event in session.stream():
            yield encode_event(event)
    finally:
        await session.aclose()


@router.post(
    "/chat",
    summary="Streaming chat with catalog recommendations",
    description="Relays the assistant answer as Server-Sent Events. A `products` event with catalog items precedes the content deltas when the last user message asks for recommendations.",
)
async def chat_stream_endpoint(
    request: Request,
    factory: ChatRelaySessionFactory = Depends(get_chat_relay_factory),
):
    try:
        payload = await request.json()
    except ValueError:
        # Invalid JSON is reported on the stream like any other malformed body
        payload = None

    messages = payload.get("messages") if isinstance(payload, dict) else None
    log.info("Chat stream requested", messages=len(messages) if isinstance(messages, list) else 0)

    session = factory.create(payload, disconnect_probe=request.is_disconnected)
    return StreamingResponse(
        _encode_stream(session),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )


@router.post(
    "/chat/recommendations",
    response_model=schemas.RecommendationResponse,
    status_code=status.HTTP_200_OK,
    summary="Catalog recommendations for a chat message",
)
async def chat_recommendations_endpoint(
    request_body: Optional[schemas.RecommendationRequest] = Body(default=None),
    use_case: RecommendProductsUseCase = Depends(get_recommend_products_use_case),
):
    started = time.perf_counter()
    text = request_body.resolve_text() if request_body else ""
    endpoint_log = log.bind(has_query=bool(request_body and request_body.query), text_len=len(text))

    if not text.strip():
        endpoint_log.info("Recommendation request without content")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_TEXT_MESSAGE)

    intent = wants_recommendations(text)
    if not intent:
        took_ms = int((time.perf_counter() - started) * 1000)
        endpoint_log.info("No recommendation intent", took_ms=took_ms)
        return schemas.RecommendationResponse(
            products=[], meta=schemas.RecommendationMeta(intent=False, took_ms=took_ms)
        )

    try:
        products = await use_case.execute(text)
    except Exception as e:
        endpoint_log.exception("Recommendation failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=RECOMMENDATION_FAILED_MESSAGE) from e

    took_ms = int((time.perf_counter() - started) * 1000)
    endpoint_log.info("Recommendations generated", products=len(products), took_ms=took_ms)
    return schemas.RecommendationResponse(
        products=products,
        meta=schemas.RecommendationMeta(
            intent=True,
            took_ms=took_ms,
            config=schemas.RecommendationConfig(
                limit=use_case.options.limit,
                num_candidates=use_case.options.num_candidates,
                min_score=use_case.options.min_score,
            ),
        ),
    )
