# File: app/main.py
import os
import time
import uuid

from dotenv import load_dotenv
load_dotenv()

import httpx
import structlog
import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pymongo.errors import PyMongoError

# --- Setup Logging First ---
from app.core.logging_config import setup_logging
setup_logging()

from app.core.config import settings
from app.core.metrics import REQUEST_PROCESSING_DURATION_SECONDS
from app.api.v1.endpoints import chat_endpoint, search_endpoint
from app.application.options import (
    ChatModelOptions,
    EmbeddingOptions,
    RecommendationOptions,
    RelayOptions,
    VectorSearchOptions,
)
from app.application.use_cases.chat_relay_use_case import ChatRelaySessionFactory
from app.application.use_cases.recommend_products_use_case import RecommendProductsUseCase
from app.db.mongo_client import close_mongo_client, get_database, ping_database
from app.dependencies import is_service_ready, set_chat_service_dependencies
from app.infrastructure.chat_models.openai_compatible_adapter import OpenAICompatibleChatAdapter
from app.infrastructure.embedding_models.hf_feature_extraction_adapter import HuggingFaceEmbeddingAdapter
from app.infrastructure.vector_search.mongo_vector_search_adapter import MongoVectorSearchAdapter

log = structlog.get_logger(__name__)


# --- Lifespan Manager (Startup/Shutdown) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info(f"{settings.PROJECT_NAME}: Initializing dependencies...")
    app.state.http_client = None
    try:
        limits = httpx.Limits(
            max_keepalive_connections=settings.HTTP_CLIENT_MAX_KEEPALIVE_CONNECTIONS,
            max_connections=settings.HTTP_CLIENT_MAX_CONNECTIONS,
        )
        timeout = httpx.Timeout(settings.HTTP_CLIENT_TIMEOUT, connect=15.0)
        http_client = httpx.AsyncClient(limits=limits, timeout=timeout)
        app.state.http_client = http_client

        database = get_database(settings.MONGODB_URI, settings.MONGODB_DB_NAME)

        embedding_adapter = HuggingFaceEmbeddingAdapter(
            http_client,
            EmbeddingOptions(
                endpoint_url=settings.embedding_endpoint_url,
                api_token=settings.HF_TOKEN.get_secret_value(),
                model_name=settings.HF_EMBED_MODEL,
                dimension=settings.EMBEDDING_DIMENSION,
                max_input_chars=settings.EMBEDDING_MAX_INPUT_CHARS,
                max_retries=settings.EMBEDDING_MAX_RETRIES,
                backoff_base_seconds=settings.EMBEDDING_BACKOFF_BASE_SECONDS,
                timeout_seconds=settings.EMBEDDING_TIMEOUT_SECONDS,
            ),
        )
        search_adapter = MongoVectorSearchAdapter(
            database[settings.PRODUCTS_COLLECTION],
            VectorSearchOptions(
                index_name=settings.VECTOR_INDEX_NAME,
                vector_path=settings.VECTOR_PATH,
                unit_prices_collection=settings.UNIT_PRICES_COLLECTION,
                product_url_prefix=settings.PRODUCT_URL_PREFIX,
                default_limit=settings.SEARCH_DEFAULT_LIMIT,
                num_candidates=settings.SEARCH_NUM_CANDIDATES,
                min_score=settings.SEARCH_MIN_SCORE,
            ),
        )
        chat_adapter = OpenAICompatibleChatAdapter(
            http_client,
            ChatModelOptions(
                api_base=settings.CHAT_API_BASE,
                api_key=settings.CHAT_API_KEY.get_secret_value(),
                model=settings.CHAT_MODEL,
                temperature=settings.CHAT_TEMPERATURE,
                max_tokens=settings.CHAT_MAX_TOKENS,
                timeout_seconds=settings.CHAT_TIMEOUT_SECONDS,
            ),
        )

        recommender = RecommendProductsUseCase(
            embedding_adapter,
            search_adapter,
            RecommendationOptions(
                limit=settings.SEARCH_DEFAULT_LIMIT,
                num_candidates=settings.SEARCH_NUM_CANDIDATES,
                min_score=settings.SEARCH_MIN_SCORE,
            ),
        )
        relay_factory = ChatRelaySessionFactory(
            recommender,
            chat_adapter,
            RelayOptions(
                heartbeat_interval_seconds=settings.HEARTBEAT_INTERVAL_SECONDS,
                system_prompt=settings.CHAT_SYSTEM_PROMPT,
                fallback_message=settings.CHAT_FALLBACK_MESSAGE,
            ),
        )
        set_chat_service_dependencies(relay_factory, recommender, ready_flag=True)
        log.info(f"{settings.PROJECT_NAME} service components initialized and ready.")
    except Exception as e:
        log.critical("CRITICAL: Failed to initialize chat service dependencies!", error=str(e), exc_info=True)
        set_chat_service_dependencies(None, None, ready_flag=False)

    yield

    log.info(f"{settings.PROJECT_NAME}: Shutting down...")
    set_chat_service_dependencies(None, None, ready_flag=False)
    client = getattr(app.state, "http_client", None)
    if client and not client.is_closed:
        await client.aclose()
        log.info("HTTPX client closed.")
    await close_mongo_client()
    log.info("Shutdown complete.")


# --- FastAPI App Instance ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Streaming chat assistant and semantic product search for the DaurTani farm-waste marketplace.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- Middlewares ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Process-Time"],
)


@app.middleware("http")
async def request_context_timing_logging(request: Request, call_next):
    if request.url.path.startswith("/metrics"):
        return await call_next(request)

    start_time = time.perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)

    request_log = log.bind(
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else "unknown",
    )
    request_log.info("Request received")

    try:
        response = await call_next(request)
    except Exception:
        process_time = time.perf_counter() - start_time
        request_log.exception("Unhandled exception during request", duration_ms=round(process_time * 1000, 2))
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    # Streams are timed until headers are sent
    process_time = time.perf_counter() - start_time
    REQUEST_PROCESSING_DURATION_SECONDS.labels(method=request.method, path=request.url.path).observe(process_time)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{process_time * 1000:.2f}ms"
    request_log.info("Request completed", status_code=response.status_code, duration_ms=round(process_time * 1000, 2))
    return response


# --- Router Inclusion ---
app.include_router(chat_endpoint.router, prefix=settings.API_V1_STR, tags=["Chat"])
app.include_router(search_endpoint.router, prefix=settings.API_V1_STR, tags=["Search"])
log.info(f"Routers included with prefix: {settings.API_V1_STR}")

# --- Prometheus Metrics Endpoint ---
app.mount("/metrics", make_asgi_app())


# --- Root & Health Endpoints ---
@app.get("/", tags=["General"], include_in_schema=False)
async def read_root():
    return JSONResponse({"message": f"{settings.PROJECT_NAME} is running!"})


@app.get("/health", tags=["Health"], summary="Health check endpoint")
async def health_check(request: Request):
    http_client = getattr(request.app.state, "http_client", None)
    http_client_ok = http_client is not None and not http_client.is_closed

    try:
        mongo_ok = await ping_database()
    except PyMongoError as e:
        log.error("Health check: MongoDB ping failed.", error=str(e))
        mongo_ok = False

    if is_service_ready() and http_client_ok and mongo_ok:
        return JSONResponse({"status": "healthy", "service": settings.PROJECT_NAME, "ready": True})

    log.error("Health check failed.", service_ready=is_service_ready(), http_client_ok=http_client_ok, mongo_ok=mongo_ok)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "unhealthy", "service": settings.PROJECT_NAME, "ready": False},
    )


# --- Main Execution ---
if __name__ == "__main__":
    port = int(os.getenv("PORT", settings.PORT))
    host = os.getenv("HOST", "0.0.0.0")
    uvicorn.run(
        "app.main:app",
        host=host,
        port=port,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
    )
