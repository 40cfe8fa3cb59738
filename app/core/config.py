# File: app/core/config.py
import sys
import logging
from typing import Optional
from pydantic import Field, field_validator, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "Kamu adalah asisten marketplace DaurTani yang membantu pembeli dan penjual limbah pertanian "
    "dan peternakan. Jawab dalam bahasa yang sama dengan pengguna, singkat dan praktis. "
    "Jangan pernah menyebut produk yang tidak ada di daftar katalog yang diberikan."
)

DEFAULT_FALLBACK_MESSAGE = (
    "Maaf, asisten sedang tidak dapat menjawab saat ini. Silakan coba lagi beberapa saat lagi."
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_prefix='DAURTANI_',
        case_sensitive=False,
        env_file_encoding='utf-8',
        extra='ignore'
    )

    PROJECT_NAME: str = "DaurTani Chat & Recommendation Service"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000
    WORKERS: int = 2

    # --- MongoDB (catalog) ---
    MONGODB_URI: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string.")
    MONGODB_DB_NAME: str = "be_express"
    PRODUCTS_COLLECTION: str = "farmwastes"
    UNIT_PRICES_COLLECTION: str = "unitprices"
    VECTOR_INDEX_NAME: str = "vector"
    VECTOR_PATH: str = "vector"
    PRODUCT_URL_PREFIX: str = "/marketplace/product/"

    # --- Hugging Face feature extraction ---
    HF_TOKEN: SecretStr = Field(description="Hugging Face access token used as bearer token.")
    HF_ROUTER_URL: str = "https://router.huggingface.co"
    HF_PROVIDER: str = "hf-inference"
    HF_EMBED_MODEL: str = "intfloat/multilingual-e5-large"
    EMBEDDING_DIMENSION: int = 1024
    EMBEDDING_MAX_INPUT_CHARS: int = 8000
    EMBEDDING_MAX_RETRIES: int = 3
    EMBEDDING_BACKOFF_BASE_SECONDS: float = 0.6
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0

    # --- Vector search defaults ---
    SEARCH_DEFAULT_LIMIT: int = 5
    SEARCH_NUM_CANDIDATES: int = 150
    SEARCH_MIN_SCORE: float = 0.30

    # --- Chat completion provider (OpenAI compatible) ---
    CHAT_API_BASE: str = "https://api.openai.com/v1"
    CHAT_API_KEY: SecretStr = Field(description="API key for the chat completion provider.")
    CHAT_MODEL: str = "gpt-4o-mini"
    CHAT_TEMPERATURE: float = 0.3
    CHAT_MAX_TOKENS: int = 800
    CHAT_TIMEOUT_SECONDS: float = 120.0
    CHAT_SYSTEM_PROMPT: str = DEFAULT_SYSTEM_PROMPT
    CHAT_FALLBACK_MESSAGE: str = DEFAULT_FALLBACK_MESSAGE
    HEARTBEAT_INTERVAL_SECONDS: float = 20.0

    # --- Shared HTTP client ---
    HTTP_CLIENT_TIMEOUT: int = 60
    HTTP_CLIENT_MAX_CONNECTIONS: int = 200
    HTTP_CLIENT_MAX_KEEPALIVE_CONNECTIONS: int = 100

    # --- Backfill job ---
    BACKFILL_BATCH_SIZE: int = 100

    # CORS
    PUBLIC_SITE_URL: Optional[str] = None

    @field_validator('LOG_LEVEL')
    @classmethod
    def check_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        normalized_v = v.upper()
        if normalized_v not in valid_levels:
            raise ValueError(f"Invalid LOG_LEVEL '{v}'. Must be one of {valid_levels}")
        return normalized_v

    @field_validator('SEARCH_MIN_SCORE')
    @classmethod
    def check_min_score(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"SEARCH_MIN_SCORE must be within [0, 1], got {v}")
        return v

    @property
    def embedding_endpoint_url(self) -> str:
        return f"{self.HF_ROUTER_URL.rstrip('/')}/{self.HF_PROVIDER}/models/{self.HF_EMBED_MODEL}/pipeline/feature-extraction"


temp_log = logging.getLogger("daurtani_chat.config.loader")
if not temp_log.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    temp_log.addHandler(handler)
    temp_log.setLevel(logging.INFO)

try:
    temp_log.info("Loading DaurTani Chat Service settings...")
    settings = Settings()
    temp_log.info("--- DaurTani Chat Service Settings Loaded ---")
    temp_log.info(f"  PROJECT_NAME: {settings.PROJECT_NAME}")
    temp_log.info(f"  LOG_LEVEL: {settings.LOG_LEVEL}")
    temp_log.info(f"  MONGODB_DB_NAME: {settings.MONGODB_DB_NAME}")
    temp_log.info(f"  PRODUCTS_COLLECTION: {settings.PRODUCTS_COLLECTION}")
    temp_log.info(f"  HF_EMBED_MODEL: {settings.HF_EMBED_MODEL} ({settings.HF_PROVIDER})")
    temp_log.info(f"  CHAT_MODEL: {settings.CHAT_MODEL}")
    temp_log.info(f"  SEARCH: limit={settings.SEARCH_DEFAULT_LIMIT} num_candidates={settings.SEARCH_NUM_CANDIDATES} min_score={settings.SEARCH_MIN_SCORE}")
    temp_log.info("----------------------------------------------")
except ValidationError as e:
    temp_log.critical(f"FATAL: DaurTani Chat Service configuration validation failed:\n{e}")
    sys.exit("FATAL: Invalid configuration. Check logs.")
