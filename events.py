"""Server-sent events stream backed by a hub subscription."""

from typing import AsyncIterator

from starlette.requests import Request

from hub import Hub, SubscriptionClosed

STREAM_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}
CONNECTED_FRAME = ": connected\n\n"
KEEPALIVE_FRAME = ": keepalive\n\n"


def format_frame(message: str) -> str:
    return f"data: {message}\n\n"


async def event_stream(request: Request, hub: Hub, keepalive: float = 15.0) -> AsyncIterator[str]:
    sub = hub.subscribe()
    try:
        # comment frame: tells the client the subscription is live
        yield CONNECTED_FRAME
        while True:
            if await request.is_disconnected():
                break
            try:
                message = await sub.receive(keepalive)
            except SubscriptionClosed:
                break
            if message is None:
                yield KEEPALIVE_FRAME
            else:
                yield format_frame(message)
    finally:
        hub.unsubscribe(sub)
