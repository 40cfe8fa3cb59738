"""
Fixtures y dobles de prueba compartidos por la suite.
"""
import os

import pytest

# Required settings, so modules that import app.core.config can be loaded
os.environ.setdefault("DAURTANI_HF_TOKEN", "hf_test_token")
os.environ.setdefault("DAURTANI_CHAT_API_KEY", "sk-test")
os.environ.setdefault("DAURTANI_MONGODB_URI", "mongodb://localhost:27017")

from app.application.options import RecommendationOptions, RelayOptions, VectorSearchOptions
from app.application.ports.chat_completion_port import ChatCompletionError

from fakes import FakeChatModel, FakeEmbeddingPort


@pytest.fixture
def fake_embedding():
    return FakeEmbeddingPort()


@pytest.fixture
def fake_chat_model():
    return FakeChatModel()


@pytest.fixture
def search_options():
    return VectorSearchOptions()


@pytest.fixture
def recommendation_options():
    return RecommendationOptions(limit=5, num_candidates=150, min_score=0.30)


@pytest.fixture
def relay_options():
    return RelayOptions(
        heartbeat_interval_seconds=20,
        system_prompt="Kamu adalah asisten DaurTani.",
        fallback_message="Maaf, asisten sedang tidak dapat menjawab.",
    )


@pytest.fixture
def upstream_error():
    return ChatCompletionError("Chat completion failed: 503 overloaded", status_code=503)
