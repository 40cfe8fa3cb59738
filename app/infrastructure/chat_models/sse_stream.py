# File: app/infrastructure/chat_models/sse_stream.py
import json
from typing import Optional

DONE_SENTINEL = "[DONE]"


def parse_sse_data(line: str) -> Optional[str]:
    """Payload of a `data:` line, or None for any other line (blank, comment, event name)."""
    if not line or not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


def extract_delta(data: str) -> Optional[str]:
    """
    Text delta of an OpenAI-style `chat.completion.chunk`. Malformed chunks and
    chunks without content (role-only, finish_reason) yield None.
    """
    try:
        chunk = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(chunk, dict):
        return None

    choices = chunk.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) and content else None
