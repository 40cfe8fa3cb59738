# File: app/core/metrics.py
from prometheus_client import Counter, Histogram

REQUEST_PROCESSING_DURATION_SECONDS = Histogram(
    "daurtani_chat_request_processing_duration_seconds",
    "Time taken to process an HTTP request (time to first byte for streams).",
    ["method", "path"]
)

# Embedding provider
EMBEDDING_API_DURATION_SECONDS = Histogram(
    "daurtani_chat_embedding_api_duration_seconds",
    "Duration of calls to the feature-extraction endpoint.",
    ["model_name"]
)

EMBEDDING_API_ERRORS_TOTAL = Counter(
    "daurtani_chat_embedding_api_errors_total",
    "Total number of failed calls to the feature-extraction endpoint.",
    ["model_name", "error_type"]
)

# Vector search
VECTOR_SEARCH_DURATION_SECONDS = Histogram(
    "daurtani_chat_vector_search_duration_seconds",
    "Duration of $vectorSearch aggregations.",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5]
)

VECTOR_SEARCH_HITS = Histogram(
    "daurtani_chat_vector_search_hits",
    "Number of hits kept after the minimum score cutoff.",
    buckets=[0, 1, 2, 3, 5, 10, 20, 50]
)

# Chat relay
CHAT_SESSIONS_TOTAL = Counter(
    "daurtani_chat_sessions_total",
    "Chat relay sessions by final outcome.",
    ["outcome"]
)

CHAT_UPSTREAM_ERRORS_TOTAL = Counter(
    "daurtani_chat_upstream_errors_total",
    "Errors raised by the upstream chat completion provider.",
    ["error_type"]
)

# Backfill job
BACKFILL_DOCUMENTS_TOTAL = Counter(
    "daurtani_chat_backfill_documents_total",
    "Catalog documents handled by the vector backfill job.",
    ["status"]
)
