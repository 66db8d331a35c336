"""WebSocket change feed: live add/update/remove events for a spot filter.

Protocol:
- Client connects to ``/ws/spots`` with any of ``status``, ``city``,
  ``category``, ``owner_id``, ``reserved_by``, ``max_price`` as query params.
- Server sends one ``add`` per currently matching spot, then live events:
  ``{"type": "add"|"update"|"remove", "spot": {...}, "timestamp": "..."}``.
- If the client falls behind, server sends ``{"type": "resync"}``. The client
  drops its view; an ``add`` for every currently matching spot follows.
- Client sends ``{"type": "ping"}``; server replies ``{"type": "pong"}``.
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from spot_handoff.app.dependencies import SpotServices
from spot_handoff.domain.enums import SpotCategory, SpotStatus
from spot_handoff.domain.schemas import SpotChangeEvent, SpotPredicate
from spot_handoff.services.change_feed import Subscription

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

# Seconds an idle pump waits before re-checking the subscription
_POLL_INTERVAL = 1.0


def event_message(event: SpotChangeEvent) -> dict:
    return {
        "type": event.type.value,
        "spot": event.spot.model_dump(mode="json"),
        "timestamp": event.timestamp.isoformat(),
    }


async def resync(subscription: Subscription, services: SpotServices) -> int:
    """Reload the matching set from the store and queue it as ``add`` events."""
    count = await subscription.resync(services.lifecycle.matching)
    logger.info("Subscriber %s resynced with %d spots", subscription.id, count)
    return count


async def pump_events(websocket: WebSocket, subscription: Subscription, services: SpotServices) -> None:
    while True:
        if subscription.lost and not subscription.pending:
            await websocket.send_json({"type": "resync"})
            await resync(subscription, services)
            continue
        event = await subscription.next_event(timeout=_POLL_INTERVAL)
        if event is not None:
            await websocket.send_json(event_message(event))


async def answer_pings(websocket: WebSocket) -> None:
    while True:
        raw = await websocket.receive_text()
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            continue
        if isinstance(msg, dict) and msg.get("type") == "ping":
            await websocket.send_json({"type": "pong"})


@router.websocket("/ws/spots")
async def spot_feed(
    websocket: WebSocket,
    status: Optional[SpotStatus] = None,
    city: Optional[str] = None,
    category: Optional[SpotCategory] = None,
    owner_id: Optional[str] = None,
    reserved_by: Optional[str] = None,
    max_price: Optional[float] = None,
):
    services: SpotServices = websocket.app.state.services
    predicate = SpotPredicate(
        status=status,
        city=city,
        category=category,
        owner_id=owner_id,
        reserved_by=reserved_by,
        max_price=max_price,
    )
    async with services.feed.subscribe(predicate) as subscription:
        await websocket.accept()
        await resync(subscription, services)
        tasks = {
            asyncio.create_task(pump_events(websocket, subscription, services)),
            asyncio.create_task(answer_pings(websocket)),
        }
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        # Whichever side stopped first decides how the session ended
        for task in done:
            error = task.exception()
            if isinstance(error, WebSocketDisconnect):
                logger.info("Spot feed client %s disconnected", subscription.id)
            elif error is not None:
                logger.error("Spot feed error for %s: %s", subscription.id, error)
