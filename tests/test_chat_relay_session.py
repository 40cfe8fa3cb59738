import asyncio
import json

import anyio
import pytest

from app.application.cancellation import CancellationToken
from app.application.options import RecommendationOptions, RelayOptions, VectorSearchOptions
from app.application.ports.embedding_port import EmbeddingProviderError
from app.application.use_cases.chat_relay_use_case import (
    ChatRelaySession,
    ChatRelaySessionFactory,
    RelayState,
    build_upstream_turns,
)
from app.application.use_cases.recommend_products_use_case import RecommendProductsUseCase
from app.domain.models import ChatRole, ChatTurn, ProductCard
from app.infrastructure.vector_search.mongo_vector_search_adapter import MongoVectorSearchAdapter

from fakes import FakeChatModel, FakeCollection, FakeEmbeddingPort, product_row

RECOMMENDATION_PAYLOAD = {"messages": [{"role": "user", "content": "rekomendasi pakan sapi dari limbah sekam"}]}
SMALL_TALK_PAYLOAD = {"messages": [{"role": "user", "content": "halo, apa kabar?"}]}


def make_recommender(embedding=None, rows=None, recommendation_options=None, search_options=None):
    search = MongoVectorSearchAdapter(
        FakeCollection(rows or [product_row("sekam-padi", 0.8)]),
        search_options or VectorSearchOptions(),
    )
    return RecommendProductsUseCase(embedding or FakeEmbeddingPort(), search, recommendation_options or RecommendationOptions())


async def collect(session):
    return [event async for event in session.stream()]


def visible(events):
    """Events without keep-alive comments."""
    return [e for e in events if e.comment is None]


def is_done(event):
    return event.data == "[DONE]" and event.event is None


@pytest.fixture
def recommender(search_options, recommendation_options):
    return make_recommender(search_options=search_options, recommendation_options=recommendation_options)


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, {}, {"messages": []}, {"messages": [{"role": "robot", "content": "x"}]}])
    async def test_invalid_body_gets_single_error_then_done(self, payload, recommender, fake_chat_model, relay_options):
        session = ChatRelaySession(payload, recommender, fake_chat_model, relay_options)

        events = await collect(session)

        assert len(events) == 2
        assert events[0].event == "error"
        assert "error" in json.loads(events[0].data)
        assert is_done(events[1])
        assert fake_chat_model.calls == []
        assert session.outcome == "rejected"
        assert session.state_history == [RelayState.OPEN, RelayState.VALIDATING, RelayState.CLOSED]


class TestRelay:
    @pytest.mark.asyncio
    async def test_products_event_precedes_content(self, recommender, fake_chat_model, relay_options):
        session = ChatRelaySession(RECOMMENDATION_PAYLOAD, recommender, fake_chat_model, relay_options)

        events = visible(await collect(session))

        assert events[0].event == "products"
        products = json.loads(events[0].data)
        assert [p["slug"] for p in products] == ["sekam-padi"]
        assert products[0]["url"].startswith("/marketplace/product/sekam-padi?utm_source=chat")
        assert [json.loads(e.data) for e in events[1:-1]] == [{"content": "Halo"}, {"content": "!"}]
        assert is_done(events[-1])
        assert session.outcome == "completed"
        assert session.state_history == [
            RelayState.OPEN, RelayState.VALIDATING, RelayState.RETRIEVING, RelayState.RELAYING, RelayState.CLOSED,
        ]

    @pytest.mark.asyncio
    async def test_small_talk_skips_retrieval(self, fake_chat_model, relay_options):
        embedding = FakeEmbeddingPort()
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, make_recommender(embedding), fake_chat_model, relay_options)

        events = visible(await collect(session))

        assert all(e.event != "products" for e in events)
        assert embedding.calls == []
        assert RelayState.RETRIEVING not in session.state_history

    @pytest.mark.asyncio
    async def test_upstream_receives_system_prompt_and_catalog_turn(self, recommender, fake_chat_model, relay_options):
        session = ChatRelaySession(RECOMMENDATION_PAYLOAD, recommender, fake_chat_model, relay_options)

        await collect(session)

        turns = fake_chat_model.calls[0]
        assert turns[0] == ChatTurn(role=ChatRole.SYSTEM, content=relay_options.system_prompt)
        assert turns[1].role == ChatRole.SYSTEM
        assert "sekam-padi" in turns[1].content
        assert turns[-1].role == ChatRole.USER

    @pytest.mark.asyncio
    async def test_retrieval_failure_is_isolated(self, fake_chat_model, relay_options):
        failing = FakeEmbeddingPort(error=EmbeddingProviderError("HF embedding failed: 503", status_code=503))
        session = ChatRelaySession(RECOMMENDATION_PAYLOAD, make_recommender(failing), fake_chat_model, relay_options)

        events = visible(await collect(session))

        assert all(e.event not in ("products", "error") for e in events)
        assert [json.loads(e.data) for e in events[:-1]] == [{"content": "Halo"}, {"content": "!"}]
        assert is_done(events[-1])
        assert session.outcome == "completed"

    @pytest.mark.asyncio
    async def test_upstream_failure_before_first_chunk_sends_fallback(self, upstream_error, relay_options):
        chat_model = FakeChatModel(error=upstream_error, fail_after=0)
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, chat_model, relay_options)

        events = visible(await collect(session))

        assert len(events) == 2
        assert events[0].event == "error"
        assert json.loads(events[0].data) == {"error": relay_options.fallback_message}
        assert is_done(events[1])
        assert session.outcome == "upstream_error"

    @pytest.mark.asyncio
    async def test_upstream_failure_mid_stream_only_terminates(self, upstream_error, relay_options):
        chat_model = FakeChatModel(deltas=["Sebagian", "jawaban"], error=upstream_error, fail_after=1)
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, chat_model, relay_options)

        events = visible(await collect(session))

        assert [e.event for e in events] == [None, None]
        assert json.loads(events[0].data) == {"content": "Sebagian"}
        assert is_done(events[1])

    @pytest.mark.asyncio
    async def test_unexpected_upstream_exception_degrades_to_fallback(self, relay_options):
        chat_model = FakeChatModel(error=RuntimeError("boom"), fail_after=0)
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, chat_model, relay_options)

        events = visible(await collect(session))

        assert events[0].event == "error"
        assert is_done(events[-1])


class TestCancellation:
    @pytest.mark.asyncio
    async def test_disconnect_during_retrieval_never_calls_upstream(self, fake_chat_model, relay_options):
        gate = asyncio.Event()
        started = asyncio.Event()

        class BlockingEmbedding(FakeEmbeddingPort):
            async def embed(self, text, kind=None):
                self.calls.append((text, kind))
                started.set()
                await gate.wait()
                return [1.0, 0.0]

        session = ChatRelaySession(RECOMMENDATION_PAYLOAD, make_recommender(BlockingEmbedding()), fake_chat_model, relay_options)
        consumer = asyncio.create_task(collect(session))

        await asyncio.wait_for(started.wait(), timeout=1)
        session.disconnect()
        events = await asyncio.wait_for(consumer, timeout=1)

        assert visible(events) == []
        assert fake_chat_model.calls == []
        assert session.outcome == "cancelled"
        assert session.state_history[-2:] == [RelayState.CANCELLING, RelayState.CLOSED]

    @pytest.mark.asyncio
    async def test_cancelled_before_start_emits_nothing(self, fake_chat_model, relay_options):
        token = CancellationToken()
        token.cancel("client_disconnected")
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, fake_chat_model, relay_options, token=token)

        assert await collect(session) == []
        assert fake_chat_model.calls == []
        assert session.state_history == [RelayState.OPEN, RelayState.CANCELLING, RelayState.CLOSED]

    @pytest.mark.asyncio
    async def test_closing_the_consumer_cancels_the_worker(self, relay_options):
        chat_model = FakeChatModel(deltas=["a", "b", "c"], delay=0.05)
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, chat_model, relay_options)

        stream = session.stream()

        async def first_event():
            return await stream.__anext__()

        consumer = asyncio.create_task(first_event())
        await asyncio.sleep(0.01)
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer
        await stream.aclose()

        assert session.state == RelayState.CLOSED
        assert session.token.cancelled
        assert session.chunks_relayed == 0

    @pytest.mark.asyncio
    async def test_task_group_cancellation_still_closes_the_session(self, relay_options):
        # Starlette stops a StreamingResponse by cancelling the scope its body runs in
        chat_model = FakeChatModel(deltas=["a"], delay=1.0)
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, chat_model, relay_options)
        received = []

        async def consume():
            async for event in session.stream():
                received.append(event)

        async with anyio.create_task_group() as tg:
            tg.start_soon(consume)
            await anyio.sleep(0.05)
            tg.cancel_scope.cancel()

        assert visible(received) == []
        assert session.state == RelayState.CLOSED
        assert session.state_history[-2:] == [RelayState.CANCELLING, RelayState.CLOSED]
        assert session.outcome == "cancelled"
        assert session.token.cancelled

    @pytest.mark.asyncio
    async def test_disconnect_probe_cancels_session(self):
        options = RelayOptions(heartbeat_interval_seconds=0.01, system_prompt="", fallback_message="x")
        chat_model = FakeChatModel(delay=1.0)

        async def probe():
            return True

        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, chat_model, options, disconnect_probe=probe)

        events = await asyncio.wait_for(collect(session), timeout=1)

        assert events == []
        assert session.token.reason == "client_disconnected"
        assert session.outcome == "cancelled"


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_ping_comments_while_waiting_for_upstream(self):
        options = RelayOptions(heartbeat_interval_seconds=0.01, system_prompt="", fallback_message="x")
        chat_model = FakeChatModel(deltas=["Halo"], delay=0.1)
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, chat_model, options)

        events = await collect(session)

        assert any(e.comment == "ping" for e in events)
        assert is_done(events[-1])


class TestSessionRules:
    def test_illegal_transition_raises(self, fake_chat_model, relay_options):
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, fake_chat_model, relay_options)

        with pytest.raises(RuntimeError):
            session._transition(RelayState.RELAYING)

    @pytest.mark.asyncio
    async def test_stream_can_only_be_consumed_once(self, fake_chat_model, relay_options):
        session = ChatRelaySession(SMALL_TALK_PAYLOAD, None, fake_chat_model, relay_options)
        await collect(session)

        with pytest.raises(RuntimeError):
            await collect(session)

    def test_factory_shares_collaborators(self, recommender, fake_chat_model, relay_options):
        factory = ChatRelaySessionFactory(recommender, fake_chat_model, relay_options)

        first = factory.create(SMALL_TALK_PAYLOAD)
        second = factory.create(SMALL_TALK_PAYLOAD)

        assert first is not second
        assert first.token is not second.token


class TestUpstreamTurns:
    def test_client_system_prompt_is_kept(self):
        turns = [ChatTurn(role=ChatRole.SYSTEM, content="custom"), ChatTurn(role=ChatRole.USER, content="hai")]

        assert build_upstream_turns(turns, [], "default") == turns

    def test_catalog_turn_goes_before_last_message(self):
        card = ProductCard(id="1", slug="kompos", title="Kompos", short_desc="", url="/marketplace/product/kompos", price=1000, unit="kg")
        turns = [
            ChatTurn(role=ChatRole.USER, content="halo"),
            ChatTurn(role=ChatRole.ASSISTANT, content="Halo!"),
            ChatTurn(role=ChatRole.USER, content="beli kompos"),
        ]

        upstream = build_upstream_turns(turns, [card], "prompt")

        assert [t.role for t in upstream] == [
            ChatRole.SYSTEM, ChatRole.USER, ChatRole.ASSISTANT, ChatRole.SYSTEM, ChatRole.USER,
        ]
        assert "Kompos" in upstream[3].content
        assert "Rp1000/kg" in upstream[3].content
