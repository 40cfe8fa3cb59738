# app/api/v1/sse.py
from app.domain.models import ServerSentEvent

SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: ServerSentEvent) -> bytes:
    """Wire form of one frame; multi-line data is split over several `data:` fields."""
    lines = []
    if event.comment is not None:
        lines.append(f": {event.comment}")
    if event.event:
        lines.append(f"event: {event.event}")
    if event.data is not None:
        lines.extend(f"data: {line}" for line in event.data.split("\n"))
    return ("\n".join(lines) + "\n\n").encode("utf-8")
