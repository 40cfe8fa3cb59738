import abc
from typing import Any, AsyncIterator, Optional, Sequence

from app.domain.models import ChatTurn


class ChatCompletionError(Exception):
    """Upstream chat completion failure (HTTP error status or transport error)."""
    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ChatCompletionPort(abc.ABC):
    """
    Abstract port for a streaming chat completion provider.
    """

    @abc.abstractmethod
    def stream_completion(self, turns: Sequence[ChatTurn]) -> AsyncIterator[str]:
        """
        Streams the assistant answer for `turns` as incremental text deltas, in the
        order the provider emits them. The iterator ends at the provider's
        end-of-stream marker.

        Raises:
            ChatCompletionError: If the provider rejects the request or the stream breaks.
        """
        raise NotImplementedError
