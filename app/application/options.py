# File: app/application/options.py
"""
Tuning passed explicitly into each component constructor. Built from `Settings`
during startup so components never read configuration globals.
"""
from pydantic import BaseModel, ConfigDict, Field


class _Options(BaseModel):
    model_config = ConfigDict(frozen=True)


class EmbeddingOptions(_Options):
    endpoint_url: str
    api_token: str
    model_name: str = "intfloat/multilingual-e5-large"
    dimension: int = 1024
    max_input_chars: int = 8000
    max_retries: int = 3
    backoff_base_seconds: float = 0.6
    timeout_seconds: float = 30.0


class VectorSearchOptions(_Options):
    index_name: str = "vector"
    vector_path: str = "vector"
    unit_prices_collection: str = "unitprices"
    product_url_prefix: str = "/marketplace/product/"
    default_limit: int = 5
    num_candidates: int = 150
    min_score: float = Field(default=0.30, ge=0.0, le=1.0)


class RecommendationOptions(_Options):
    limit: int = 5
    num_candidates: int = 150
    min_score: float = Field(default=0.30, ge=0.0, le=1.0)


class ChatModelOptions(_Options):
    api_base: str = "https://api.openai.com/v1"
    api_key: str
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    max_tokens: int = 800
    timeout_seconds: float = 120.0


class RelayOptions(_Options):
    heartbeat_interval_seconds: float = Field(default=20.0, gt=0)
    system_prompt: str = ""
    fallback_message: str = "Maaf, asisten sedang tidak dapat menjawab saat ini. Silakan coba lagi beberapa saat lagi."
