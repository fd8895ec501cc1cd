"""Server-sent event stream of the event bus."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from syncboard.api.deps import get_event_bus, get_settings
from syncboard.config import Settings
from syncboard.services.event_bus import EventBus

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["events"])


async def event_generator(
    request: Request, event_bus: EventBus, ping_seconds: float
) -> AsyncGenerator[dict[str, Any]]:
    """Yield bus events as SSE messages; a ping goes out when the bus is quiet.

    Events dropped for a slow client are recovered by polling ``/api/logs/since``.
    """
    queue = event_bus.subscribe()
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=ping_seconds)
            except TimeoutError:
                yield {"event": "ping", "data": json.dumps({"type": "ping"})}
                continue
            yield {
                "event": str(event.get("type", "message")),
                "data": json.dumps(event, default=str),
            }
    finally:
        event_bus.unsubscribe(queue)
        logger.debug("Event stream closed")


@router.get("")
async def stream_events(
    request: Request,
    event_bus: Annotated[EventBus, Depends(get_event_bus)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> EventSourceResponse:
    return EventSourceResponse(event_generator(request, event_bus, settings.event_ping_seconds))
