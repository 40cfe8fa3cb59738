# File: app/infrastructure/chat_models/openai_compatible_adapter.py
from typing import AsyncIterator, Sequence

import httpx
import structlog

from app.application.options import ChatModelOptions
from app.application.ports.chat_completion_port import ChatCompletionError, ChatCompletionPort
from app.core.metrics import CHAT_UPSTREAM_ERRORS_TOTAL
from app.domain.models import ChatTurn
from app.infrastructure.chat_models.sse_stream import DONE_SENTINEL, extract_delta, parse_sse_data

log = structlog.get_logger(__name__)

ERROR_BODY_MAX_CHARS = 300


class OpenAICompatibleChatAdapter(ChatCompletionPort):
    """
    Streams `POST {api_base}/chat/completions` with `stream: true` and relays the
    content deltas of the returned server-sent events.
    """

    def __init__(self, http_client: httpx.AsyncClient, options: ChatModelOptions):
        self._client = http_client
        self._options = options
        log.info("OpenAICompatibleChatAdapter initialized", api_base=options.api_base, model=options.model)

    def build_payload(self, turns: Sequence[ChatTurn]) -> dict:
        return {
            "model": self._options.model,
            "messages": [{"role": t.role.value, "content": t.content} for t in turns],
            "temperature": self._options.temperature,
            "max_tokens": self._options.max_tokens,
            "stream": True,
        }

    async def stream_completion(self, turns: Sequence[ChatTurn]) -> AsyncIterator[str]:
        url = f"{self._options.api_base.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._options.api_key}",
            "Accept": "text/event-stream",
        }
        stream_log = log.bind(model=self._options.model, turns=len(turns))

        try:
            async with self._client.stream(
                "POST",
                url,
                json=self.build_payload(turns),
                headers=headers,
                timeout=self._options.timeout_seconds,
            ) as response:
                if response.status_code < 200 or response.status_code >= 300:
                    body = (await response.aread()).decode("utf-8", errors="replace")[:ERROR_BODY_MAX_CHARS]
                    stream_log.error("Upstream chat completion rejected", status_code=response.status_code, body=body)
                    CHAT_UPSTREAM_ERRORS_TOTAL.labels(error_type=f"http_{response.status_code}").inc()
                    raise ChatCompletionError(
                        f"Chat completion failed: {response.status_code} {body}",
                        status_code=response.status_code,
                        detail=body,
                    )

                async for line in response.aiter_lines():
                    data = parse_sse_data(line)
                    if data is None:
                        continue
                    if data == DONE_SENTINEL:
                        stream_log.debug("Upstream stream finished")
                        return
                    delta = extract_delta(data)
                    if delta is None:
                        continue
                    yield delta
        except httpx.TimeoutException as e:
            stream_log.error("Timeout talking to chat completion provider", error=str(e))
            CHAT_UPSTREAM_ERRORS_TOTAL.labels(error_type="timeout").inc()
            raise ChatCompletionError(f"Chat completion timed out: {e}") from e
        except httpx.HTTPError as e:
            stream_log.error("Transport error talking to chat completion provider", error=str(e))
            CHAT_UPSTREAM_ERRORS_TOTAL.labels(error_type="transport_error").inc()
            raise ChatCompletionError(f"Chat completion transport error: {e}") from e
