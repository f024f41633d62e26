"""Server-sent events stream of newly ingested readings."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.api import get_store
from models.records import Reading
from services.bus import EventBus
from services.store import ReadingStore
from settings import get_settings

logger = logging.getLogger(__name__)

CONNECTED_FRAME = ": connected\n\n"
HEARTBEAT_FRAME = ": ping\n\n"

router = APIRouter()


def format_frame(reading: Reading) -> str:
    return f"data: {json.dumps(reading.to_dict())}\n\n"


async def reading_events(
    bus: EventBus,
    heartbeat_seconds: float = 15.0,
    queue_size: int = 256,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for every reading published while the client listens.

    The bus callback runs on whichever thread ingested the reading, so it only
    hands the reading over to this event loop and never blocks the publisher.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Reading] = asyncio.Queue(maxsize=queue_size)

    def enqueue(reading: Reading) -> None:
        try:
            queue.put_nowait(reading)
        except asyncio.QueueFull:
            logger.warning(
                "Live stream queue full; dropping reading",
                extra={"device_id": reading.device_id},
            )

    def on_reading(reading: Reading) -> None:
        loop.call_soon_threadsafe(enqueue, reading)

    unsubscribe = bus.subscribe(on_reading)
    logger.info("Live stream viewer connected", extra={"subscribers": bus.subscriber_count})
    try:
        yield CONNECTED_FRAME
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            try:
                reading = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                yield HEARTBEAT_FRAME
                continue
            yield format_frame(reading)
    finally:
        unsubscribe()
        logger.info(
            "Live stream viewer disconnected", extra={"subscribers": bus.subscriber_count}
        )


@router.get("/stream", summary="Live stream of ingested readings (server-sent events).")
async def stream_readings(
    request: Request,
    store: ReadingStore = Depends(get_store),
) -> StreamingResponse:
    settings = get_settings()
    events = reading_events(
        store.bus,
        heartbeat_seconds=settings.stream_heartbeat_seconds,
        queue_size=settings.stream_queue_size,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
