# File: app/infrastructure/embedding_models/hf_feature_extraction_adapter.py
import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Union

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from app.application.options import EmbeddingOptions
from app.application.ports.embedding_port import (
    EmbeddingPort,
    EmbeddingProviderError,
    EmptyEmbeddingError,
)
from app.core.metrics import EMBEDDING_API_DURATION_SECONDS, EMBEDDING_API_ERRORS_TOTAL
from app.domain.models import EmbeddingKind, EmbeddingVector
from app.infrastructure.embedding_models.feature_extraction import (
    l2_normalize,
    resolve_batch,
    resolve_single,
)

log = structlog.get_logger(__name__)

ERROR_BODY_MAX_CHARS = 300


def _is_retryable(exc: BaseException) -> bool:
    if not isinstance(exc, EmbeddingProviderError) or exc.status_code is None:
        return False
    return exc.status_code == 429 or exc.status_code >= 500


class HuggingFaceEmbeddingAdapter(EmbeddingPort):
    """
    Adapter for the Hugging Face router feature-extraction pipeline
    (E5 family models: inputs are prefixed with `query: ` or `passage: `).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        options: EmbeddingOptions,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = http_client
        self._options = options
        self._sleep = sleep
        log.info(
            "HuggingFaceEmbeddingAdapter initialized",
            model_name=options.model_name,
            endpoint=options.endpoint_url,
            max_retries=options.max_retries,
        )

    def _prepare(self, text: str, kind: EmbeddingKind) -> str:
        return f"{EmbeddingKind(kind).value}: {(text or '')[:self._options.max_input_chars]}"

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._options.max_retries + 1),
            wait=wait_exponential(multiplier=self._options.backoff_base_seconds),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            reraise=True,
            before_sleep=lambda retry_state: log.warning(
                "Retrying HF feature-extraction call",
                model_name=self._options.model_name,
                attempt_number=retry_state.attempt_number,
                wait_time=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(retry_state.outcome.exception()) if retry_state.outcome else "Unknown error",
            ),
        )

    async def _post_once(self, inputs: Union[str, List[str]]) -> Any:
        model_name = self._options.model_name
        headers = {
            "Authorization": f"Bearer {self._options.api_token}",
            "Content-Type": "application/json",
        }
        try:
            with EMBEDDING_API_DURATION_SECONDS.labels(model_name=model_name).time():
                response = await self._client.post(
                    self._options.endpoint_url,
                    json={"inputs": inputs},
                    headers=headers,
                    timeout=self._options.timeout_seconds,
                )
        except httpx.RequestError as e:
            EMBEDDING_API_ERRORS_TOTAL.labels(model_name=model_name, error_type="connection_error").inc()
            raise EmbeddingProviderError(f"HF embedding request failed: {type(e).__name__}: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            body = response.text[:ERROR_BODY_MAX_CHARS]
            EMBEDDING_API_ERRORS_TOTAL.labels(model_name=model_name, error_type=f"http_{response.status_code}").inc()
            raise EmbeddingProviderError(
                f"HF embedding failed: {response.status_code} {body}",
                status_code=response.status_code,
                detail=body,
            )

        try:
            return response.json()
        except json.JSONDecodeError as e:
            EMBEDDING_API_ERRORS_TOTAL.labels(model_name=model_name, error_type="invalid_payload").inc()
            raise EmptyEmbeddingError("Empty embedding result") from e

    async def _call(self, inputs: Union[str, List[str]]) -> Any:
        async for attempt in self._retrying():
            with attempt:
                return await self._post_once(inputs)

    def _check_dimension(self, vector: EmbeddingVector) -> EmbeddingVector:
        if len(vector) != self._options.dimension:
            log.warning(
                "Embedding dimension differs from configured dimension",
                model_name=self._options.model_name,
                expected=self._options.dimension,
                got=len(vector),
            )
        return vector

    async def embed(self, text: str, kind: EmbeddingKind = EmbeddingKind.PASSAGE) -> EmbeddingVector:
        raw = await self._call(self._prepare(text, kind))
        vector = l2_normalize(resolve_single(raw).pooled())
        return self._check_dimension(vector)

    async def embed_batch(self, texts: List[str], kind: EmbeddingKind = EmbeddingKind.PASSAGE) -> List[EmbeddingVector]:
        if not texts:
            return []

        batch_log = log.bind(adapter="HuggingFaceEmbeddingAdapter", num_texts=len(texts), kind=EmbeddingKind(kind).value)
        batch_log.debug("Embedding batch via HF router...")

        raw = await self._call([self._prepare(t, kind) for t in texts])
        return [self._check_dimension(l2_normalize(item.pooled())) for item in resolve_batch(raw, len(texts))]

    def get_model_info(self) -> Dict[str, Any]:
        return {"model_name": self._options.model_name, "dimension": self._options.dimension}
