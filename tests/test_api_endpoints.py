import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1.endpoints import chat_endpoint, search_endpoint
from app.application.ports.embedding_port import EmbeddingProviderError
from app.application.use_cases.chat_relay_use_case import ChatRelaySessionFactory
from app.application.use_cases.recommend_products_use_case import RecommendProductsUseCase
from app.dependencies import get_chat_relay_factory, get_recommend_products_use_case
from app.infrastructure.vector_search.mongo_vector_search_adapter import MongoVectorSearchAdapter

from fakes import FakeCollection, FakeEmbeddingPort, product_row

API = "/api/v1"


def build_app() -> FastAPI:
    app = FastAPI()
    app.include_router(chat_endpoint.router, prefix=API)
    app.include_router(search_endpoint.router, prefix=API)
    return app


def sse_frames(body: str):
    return [frame for frame in body.split("\n\n") if frame]


@pytest.fixture
def collection():
    return FakeCollection([product_row("sekam-padi", 0.42), product_row("serbuk-kayu", 0.10)])


@pytest.fixture
def recommender(collection, fake_embedding, search_options, recommendation_options):
    return RecommendProductsUseCase(
        fake_embedding, MongoVectorSearchAdapter(collection, search_options), recommendation_options
    )


@pytest.fixture
def client(recommender, fake_chat_model, relay_options):
    app = build_app()
    factory = ChatRelaySessionFactory(recommender, fake_chat_model, relay_options)
    app.dependency_overrides[get_chat_relay_factory] = lambda: factory
    app.dependency_overrides[get_recommend_products_use_case] = lambda: recommender
    with TestClient(app) as test_client:
        yield test_client


class TestChatStream:
    def test_streams_products_then_content(self, client):
        payload = {"messages": [{"role": "user", "content": "rekomendasi pakan sapi dari limbah sekam"}]}

        response = client.post(f"{API}/chat", json=payload)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"
        assert response.headers["x-accel-buffering"] == "no"
        frames = sse_frames(response.text)
        assert frames[0].startswith("event: products\n")
        assert frames[1] == 'data: {"content": "Halo"}'
        assert frames[-1] == "data: [DONE]"

    def test_invalid_json_reports_error_on_stream(self, client, fake_chat_model):
        response = client.post(
            f"{API}/chat", content=b"{no es json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 200
        frames = sse_frames(response.text)
        assert len(frames) == 2
        assert frames[0].startswith("event: error\ndata: ")
        assert frames[1] == "data: [DONE]"
        assert fake_chat_model.calls == []


class TestRecommendations:
    def test_missing_text_is_rejected(self, client):
        response = client.post(f"{API}/chat/recommendations", json={})

        assert response.status_code == 400
        assert response.json()["detail"] == chat_endpoint.MISSING_TEXT_MESSAGE

    def test_small_talk_has_no_intent(self, client, fake_embedding):
        response = client.post(f"{API}/chat/recommendations", json={"query": "halo, apa kabar?"})

        body = response.json()
        assert response.status_code == 200
        assert body["products"] == []
        assert body["meta"]["intent"] is False
        assert body["meta"]["config"] is None
        assert fake_embedding.calls == []

    def test_recommendations_from_last_message(self, client):
        payload = {"messages": [
            {"role": "user", "content": "halo"},
            {"role": "user", "content": "rekomendasi pakan sapi dari limbah sekam"},
        ]}

        response = client.post(f"{API}/chat/recommendations", json=payload)

        body = response.json()
        assert response.status_code == 200
        assert [p["slug"] for p in body["products"]] == ["sekam-padi"]
        assert body["meta"]["intent"] is True
        assert body["meta"]["config"] == {"limit": 5, "num_candidates": 150, "min_score": 0.30}

    def test_failure_returns_500(self, client, fake_embedding):
        fake_embedding.error = EmbeddingProviderError("HF embedding failed: 503", status_code=503)

        response = client.post(f"{API}/chat/recommendations", json={"query": "cari pupuk kompos"})

        assert response.status_code == 500
        assert response.json()["detail"] == chat_endpoint.RECOMMENDATION_FAILED_MESSAGE


class TestProductSearch:
    def test_returns_hits(self, client, collection):
        response = client.post(f"{API}/products/search", json={"query": "sekam", "species": "sapi", "min_score": 0.05})

        body = response.json()
        assert response.status_code == 200
        assert [h["slug"] for h in body["hits"]] == ["sekam-padi", "serbuk-kayu"]
        assert collection.pipelines[0][0]["$vectorSearch"]["filter"] == {"species": "sapi"}

    def test_invalid_category_is_422(self, client):
        response = client.post(f"{API}/products/search", json={"query": "sekam", "categories": ["xyz"]})

        assert response.status_code == 422

    def test_embedding_failure_is_502(self, client, fake_embedding):
        fake_embedding.error = EmbeddingProviderError("HF embedding failed: 500", status_code=500)

        response = client.post(f"{API}/products/search", json={"query": "sekam"})

        assert response.status_code == 502

    def test_request_validation(self, client):
        response = client.post(f"{API}/products/search", json={"query": "", "limit": 500})

        assert response.status_code == 422


def test_unready_service_returns_503():
    with TestClient(build_app()) as test_client:
        chat = test_client.post(f"{API}/chat", json={"messages": []})
        search = test_client.post(f"{API}/products/search", json={"query": "sekam"})

    assert chat.status_code == 503
    assert search.status_code == 503
    assert json.loads(search.text)["detail"].startswith("Recommendation service is not ready")
