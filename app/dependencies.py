# app/dependencies.py
"""
Centralized dependency injection resolver for the Chat Service.
"""
from typing import Optional

import structlog
from fastapi import HTTPException, status

from app.application.use_cases.chat_relay_use_case import ChatRelaySessionFactory
from app.application.use_cases.recommend_products_use_case import RecommendProductsUseCase

# These will be set by main.py at startup
_chat_relay_factory: Optional[ChatRelaySessionFactory] = None
_recommend_products_use_case: Optional[RecommendProductsUseCase] = None
_service_ready: bool = False

log = structlog.get_logger(__name__)


def set_chat_service_dependencies(
    chat_relay_factory: Optional[ChatRelaySessionFactory],
    recommend_products_use_case: Optional[RecommendProductsUseCase],
    ready_flag: bool,
):
    """Called from main.py lifespan to set up shared instances."""
    global _chat_relay_factory, _recommend_products_use_case, _service_ready
    _chat_relay_factory = chat_relay_factory
    _recommend_products_use_case = recommend_products_use_case
    _service_ready = ready_flag
    log.info(
        "Chat service dependencies set",
        relay_ready=bool(chat_relay_factory),
        recommender_ready=bool(recommend_products_use_case),
        service_ready=ready_flag,
    )


def is_service_ready() -> bool:
    return _service_ready


def get_chat_relay_factory() -> ChatRelaySessionFactory:
    if not _service_ready or _chat_relay_factory is None:
        log.error("ChatRelaySessionFactory requested but service is not ready.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat service is not ready. Please try again later.",
        )
    return _chat_relay_factory


def get_recommend_products_use_case() -> RecommendProductsUseCase:
    if not _service_ready or _recommend_products_use_case is None:
        log.error("RecommendProductsUseCase requested but service is not ready.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Recommendation service is not ready. Please try again later.",
        )
    return _recommend_products_use_case
