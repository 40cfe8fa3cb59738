# app/application/use_cases/chat_relay_use_case.py
import asyncio
import json
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence

import structlog
from pydantic import ValidationError

from app.application.cancellation import CancellationToken, OperationCancelled
from app.application.options import RelayOptions
from app.application.ports.chat_completion_port import ChatCompletionError, ChatCompletionPort
from app.application.use_cases.recommend_products_use_case import RecommendProductsUseCase
from app.core.metrics import CHAT_SESSIONS_TOTAL
from app.domain.intent import wants_recommendations
from app.domain.models import ChatRole, ChatTranscript, ChatTurn, ProductCard, ServerSentEvent

log = structlog.get_logger(__name__)

DONE_EVENT = ServerSentEvent(data="[DONE]")
INVALID_REQUEST_MESSAGE = "messages wajib berupa daftar pesan {role, content} yang tidak kosong."

DisconnectProbe = Callable[[], Awaitable[bool]]

_END = object()


class RelayState(str, Enum):
    OPEN = "open"
    VALIDATING = "validating"
    RETRIEVING = "retrieving"
    RELAYING = "relaying"
    CANCELLING = "cancelling"
    CLOSED = "closed"


_ALLOWED_TRANSITIONS = {
    RelayState.OPEN: {RelayState.VALIDATING, RelayState.CANCELLING},
    RelayState.VALIDATING: {RelayState.RETRIEVING, RelayState.RELAYING, RelayState.CANCELLING, RelayState.CLOSED},
    RelayState.RETRIEVING: {RelayState.RELAYING, RelayState.CANCELLING},
    RelayState.RELAYING: {RelayState.CANCELLING, RelayState.CLOSED},
    RelayState.CANCELLING: {RelayState.CLOSED},
    RelayState.CLOSED: set(),
}


def error_event(message: str) -> ServerSentEvent:
    return ServerSentEvent(event="error", data=json.dumps({"error": message}, ensure_ascii=False))


def products_event(products: Sequence[ProductCard]) -> ServerSentEvent:
    payload = [p.model_dump(mode="json") for p in products]
    return ServerSentEvent(event="products", data=json.dumps(payload, ensure_ascii=False))


def content_event(delta: str) -> ServerSentEvent:
    return ServerSentEvent(data=json.dumps({"content": delta}, ensure_ascii=False))


def describe_products(products: Sequence[ProductCard]) -> str:
    lines = ["Produk dari katalog DaurTani yang relevan. Hanya rekomendasikan produk dalam daftar ini:"]
    for p in products:
        price = f", Rp{p.price:g}/{p.unit or 'unit'}" if p.price is not None else ""
        stock = f", stok {p.stock}" if p.stock is not None else ""
        lines.append(f"- {p.title} ({p.url}{price}{stock})")
    return "\n".join(lines)


def build_upstream_turns(
    turns: Sequence[ChatTurn],
    products: Sequence[ProductCard],
    system_prompt: str,
) -> List[ChatTurn]:
    """
    History sent upstream: the configured system prompt first when the client
    sent none, and the recommended products as a system turn right before the
    last message.
    """
    upstream = list(turns)
    if system_prompt and not any(t.role == ChatRole.SYSTEM for t in upstream):
        upstream.insert(0, ChatTurn(role=ChatRole.SYSTEM, content=system_prompt))
    if products:
        upstream.insert(len(upstream) - 1, ChatTurn(role=ChatRole.SYSTEM, content=describe_products(products)))
    return upstream


class ChatRelaySession:
    """
    One streaming chat request.

    A worker task validates the transcript, optionally retrieves catalog products
    and relays the upstream completion; a heartbeat task keeps the connection
    alive. Both write into a queue drained by `stream()`. Cancelling the token
    (client gone) stops both tasks and nothing is written afterwards.
    """

    def __init__(
        self,
        payload: Any,
        recommender: Optional[RecommendProductsUseCase],
        chat_model: ChatCompletionPort,
        options: RelayOptions,
        token: Optional[CancellationToken] = None,
        disconnect_probe: Optional[DisconnectProbe] = None,
    ):
        self._payload = payload
        self._recommender = recommender
        self._chat_model = chat_model
        self._options = options
        self.token = token or CancellationToken()
        self._disconnect_probe = disconnect_probe

        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._started = False
        self._closing = False
        self._done_sent = False

        self.state = RelayState.OPEN
        self.state_history: List[RelayState] = [RelayState.OPEN]
        self.outcome: Optional[str] = None
        self.chunks_relayed = 0
        self.products: List[ProductCard] = []
        self._log = log.bind(relay_session=id(self))

    def _transition(self, new_state: RelayState):
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal relay transition {self.state.value} -> {new_state.value}")
        self._log.debug("Relay state change", from_state=self.state.value, to_state=new_state.value)
        self.state = new_state
        self.state_history.append(new_state)

    def _emit(self, event: ServerSentEvent):
        # Nothing is written after cancellation or after the terminal marker
        if self.token.cancelled or self._done_sent:
            return
        self._done_sent = event == DONE_EVENT
        self._queue.put_nowait(event)

    def disconnect(self):
        self.token.cancel("client_disconnected")

    async def stream(self) -> AsyncIterator[ServerSentEvent]:
        if self._started:
            raise RuntimeError("ChatRelaySession.stream() can only be consumed once")
        self._started = True

        try:
            if self.token.cancelled:
                return

            self._heartbeat = asyncio.create_task(self._heartbeat_loop())
            self._worker = asyncio.create_task(self._run())
            self.token.on_cancel(self._worker.cancel)
            self._worker.add_done_callback(lambda _: self._queue.put_nowait(_END))

            while True:
                item = await self._queue.get()
                if item is _END or self.token.cancelled:
                    break
                yield item
        finally:
            await self.aclose()

    async def aclose(self):
        if self._closing:
            return
        self._closing = True

        worker = self._worker
        finished_cleanly = (
            worker is not None and worker.done()
            and not worker.cancelled() and worker.exception() is None
        )
        if self.token.cancelled or not finished_cleanly:
            self.token.cancel(self.token.reason or "closed")
            self._transition(RelayState.CANCELLING)
            self.outcome = "cancelled" if self.outcome in (None, "completed") else self.outcome

        tasks = [t for t in (self._worker, self._heartbeat) if t is not None]
        for task in tasks:
            task.cancel()
        try:
            # The server may cancel this await again on client disconnect
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    self._log.error("Relay task failed", error=str(result), error_type=type(result).__name__)
        finally:
            self._transition(RelayState.CLOSED)
            CHAT_SESSIONS_TOTAL.labels(outcome=self.outcome or "failed").inc()
            self._log.info(
                "Chat relay closed",
                outcome=self.outcome,
                chunks=self.chunks_relayed,
                products=len(self.products),
                reason=self.token.reason,
            )

    async def _heartbeat_loop(self):
        interval = self._options.heartbeat_interval_seconds
        while not await self.token.sleep(interval):
            if self._disconnect_probe is not None and await self._disconnect_probe():
                self._log.info("Client disconnected (detected by heartbeat)")
                self.token.cancel("client_disconnected")
                return
            self._emit(ServerSentEvent(comment="ping"))

    async def _run(self):
        try:
            await self._run_steps()
        except OperationCancelled:
            self.outcome = "cancelled"

    async def _run_steps(self):
        self._transition(RelayState.VALIDATING)
        try:
            transcript = ChatTranscript.model_validate(self._payload)
        except ValidationError as e:
            self._log.info("Rejected chat request", errors=e.error_count())
            self._emit(error_event(INVALID_REQUEST_MESSAGE))
            self._emit(DONE_EVENT)
            self.outcome = "rejected"
            return

        last_user_text = transcript.last_user_text() or ""
        if self._recommender is not None and wants_recommendations(last_user_text):
            self._transition(RelayState.RETRIEVING)
            try:
                self.products = await self._recommender.execute(last_user_text)
            except Exception as e:
                # Retrieval never breaks the conversation
                self._log.warning("Recommendation retrieval failed", error=str(e), error_type=type(e).__name__)
                self.products = []
            else:
                self._emit(products_event(self.products))

        self.token.raise_if_cancelled()
        self._transition(RelayState.RELAYING)
        turns = build_upstream_turns(transcript.messages, self.products, self._options.system_prompt)

        try:
            async for delta in self._chat_model.stream_completion(turns):
                self.token.raise_if_cancelled()
                self._emit(content_event(delta))
                self.chunks_relayed += 1
        except ChatCompletionError as e:
            self._log.warning(
                "Upstream chat completion failed",
                error=str(e),
                status_code=e.status_code,
                chunks_relayed=self.chunks_relayed,
            )
            self._finish_after_upstream_failure()
            return
        except OperationCancelled:
            raise
        except Exception:
            self._log.exception("Unexpected error while relaying chat completion", chunks_relayed=self.chunks_relayed)
            self._finish_after_upstream_failure()
            return

        self._emit(DONE_EVENT)
        self.outcome = "completed"

    def _finish_after_upstream_failure(self):
        # Chunks already sent are not retracted
        if self.chunks_relayed == 0:
            self._emit(error_event(self._options.fallback_message))
        self._emit(DONE_EVENT)
        self.outcome = "upstream_error"


class ChatRelaySessionFactory:
    """Builds one `ChatRelaySession` per request with the shared collaborators."""

    def __init__(
        self,
        recommender: Optional[RecommendProductsUseCase],
        chat_model: ChatCompletionPort,
        options: RelayOptions,
    ):
        self.recommender = recommender
        self.chat_model = chat_model
        self.options = options
        log.info(
            "ChatRelaySessionFactory initialized",
            chat_adapter=type(chat_model).__name__,
            retrieval_enabled=recommender is not None,
            heartbeat_interval_seconds=options.heartbeat_interval_seconds,
        )

    def create(self, payload: Any, disconnect_probe: Optional[DisconnectProbe] = None) -> ChatRelaySession:
        return ChatRelaySession(
            payload,
            recommender=self.recommender,
            chat_model=self.chat_model,
            options=self.options,
            disconnect_probe=disconnect_probe,
        )
