"""
Dobles de prueba: puertos falsos y una colección MongoDB mínima.
"""
import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from app.application.ports.chat_completion_port import ChatCompletionPort
from app.application.ports.embedding_port import EmbeddingPort
from app.domain.models import ChatTurn, EmbeddingKind, EmbeddingVector


class FakeEmbeddingPort(EmbeddingPort):
    """Returns a fixed unit vector and records every call."""

    def __init__(self, vector: Optional[EmbeddingVector] = None, error: Optional[Exception] = None):
        self.vector = vector or [1.0, 0.0]
        self.error = error
        self.calls: List[tuple] = []
        self.batch_calls: List[tuple] = []

    async def embed(self, text: str, kind: EmbeddingKind = EmbeddingKind.PASSAGE) -> EmbeddingVector:
        self.calls.append((text, kind))
        if self.error:
            raise self.error
        return list(self.vector)

    async def embed_batch(self, texts: List[str], kind: EmbeddingKind = EmbeddingKind.PASSAGE) -> List[EmbeddingVector]:
        self.batch_calls.append((list(texts), kind))
        if self.error:
            raise self.error
        return [list(self.vector) for _ in texts]


class FakeChatModel(ChatCompletionPort):
    """
    Streams `deltas`; optionally raises `error` after `fail_after` deltas and
    waits `delay` seconds before the first one.
    """

    def __init__(
        self,
        deltas: Sequence[str] = ("Halo", "!"),
        error: Optional[Exception] = None,
        fail_after: int = 0,
        delay: float = 0.0,
    ):
        self.deltas = list(deltas)
        self.error = error
        self.fail_after = fail_after
        self.delay = delay
        self.calls: List[List[ChatTurn]] = []

    async def stream_completion(self, turns: Sequence[ChatTurn]) -> AsyncIterator[str]:
        self.calls.append(list(turns))
        if self.delay:
            await asyncio.sleep(self.delay)
        for index, delta in enumerate(self.deltas):
            if self.error is not None and index == self.fail_after:
                raise self.error
            yield delta
        if self.error is not None and self.fail_after >= len(self.deltas):
            raise self.error


class FakeCursor:
    def __init__(self, rows: List[Dict[str, Any]]):
        self.rows = rows

    async def to_list(self, length=None):
        return list(self.rows)


class FakeCollection:
    """Minimal async collection: `aggregate` returns the configured rows."""
    name = "farmwastes"

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.rows = rows or []
        self.error = error
        self.pipelines: List[List[Dict[str, Any]]] = []

    async def aggregate(self, pipeline):
        self.pipelines.append(pipeline)
        if self.error:
            raise self.error
        return FakeCursor(self.rows)


def product_row(slug: Optional[str], score: float, **extra) -> Dict[str, Any]:
    row = {
        "_id": f"id-{slug or 'none'}",
        "wasteName": f"Produk {slug}",
        "description": "Limbah pertanian berkualitas",
        "slug": slug,
        "imageUrls": [f"https://cdn.example/{slug}.jpg"],
        "averageRating": 4.5,
        "species": ["sapi", "kambing"],
        "use_cases": ["pakan"],
        "stock": 12,
        "score": score,
        "baseUnit": [{"pricePerUnit": 2500, "unit": "kg"}],
    }
    row.update(extra)
    return row


