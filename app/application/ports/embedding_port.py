# app/application/ports/embedding_port.py
import abc
from typing import Any, List, Optional

from app.domain.models import EmbeddingKind, EmbeddingVector


class EmbeddingError(Exception):
    """Base exception for embedding failures."""
    pass


class EmbeddingProviderError(EmbeddingError):
    """The provider answered with a non-success status, or could not be reached (status_code=None)."""
    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class EmptyEmbeddingError(EmbeddingError):
    """The provider answered successfully but the payload held no usable vector."""
    pass


class EmbeddingPort(abc.ABC):
    """
    Abstract port defining the interface for a text embedding provider.
    """

    @abc.abstractmethod
    async def embed(self, text: str, kind: EmbeddingKind = EmbeddingKind.PASSAGE) -> EmbeddingVector:
        """
        Embeds a single text.

        Args:
            text: Free text. Implementations truncate oversized input.
            kind: Whether the text is a search query or a catalog passage.

        Returns:
            An L2-normalized vector of the model's fixed dimension.

        Raises:
            EmbeddingProviderError: If the provider call fails.
            EmptyEmbeddingError: If the provider returns no usable vector.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def embed_batch(self, texts: List[str], kind: EmbeddingKind = EmbeddingKind.PASSAGE) -> List[EmbeddingVector]:
        """
        Embeds several texts in one provider call. Output order matches input order.
        """
        raise NotImplementedError
