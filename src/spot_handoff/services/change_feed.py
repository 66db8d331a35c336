"""Fan-out of committed spot writes to predicate-filtered subscribers.

SpotStore publishes a ``SpotChange`` after every accepted write. Each
subscription turns the changes it cares about into add/update/remove events:

- a spot that starts matching the predicate is an ``add`` and is tracked;
- a tracked spot that changes is an ``update`` (even if it no longer
  matches, so viewers see it get reserved);
- a tracked spot reaching a terminal status is a ``remove`` carrying the
  final state.

Events for one spot are never delivered out of version order. Delivery is
at-least-once for the life of a subscription. A subscriber that falls behind
is marked ``lost``; ``resync`` then drops what it had and re-sends the full
matching set, after which the version ordering starts over.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional

from spot_handoff.domain.clock import utcnow
from spot_handoff.domain.enums import ChangeType
from spot_handoff.domain.schemas import SpotChangeEvent, SpotPredicate, SpotRecord

logger = logging.getLogger(__name__)

SpotLoader = Callable[[SpotPredicate], Awaitable[Iterable[SpotRecord]]]


@dataclass(frozen=True)
class SpotChange:
    """A committed write: the record before (None on insert) and after."""

    old: Optional[SpotRecord]
    new: SpotRecord


class Subscription:
    """Caller-owned handle on a live, filtered view of spot changes.

    Obtain one through ``ChangeFeed.subscribe``; it is released when the
    ``async with`` block exits, however it exits.
    """

    def __init__(self, predicate: SpotPredicate, queue_size: int):
        self.id = uuid.uuid4().hex[:12]
        self.predicate = predicate
        self.lost = False
        self.closed = False
        self._queue: asyncio.Queue[SpotChangeEvent] = asyncio.Queue(maxsize=queue_size)
        self._tracked: set[str] = set()
        self._versions: dict[str, int] = {}
        self._reloading = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def offer(self, change: SpotChange) -> bool:
        """Translate a change into an event for this subscriber, if relevant."""
        if self.closed or self.lost:
            return False

        spot = change.new
        last_version = self._versions.get(spot.id)
        if last_version is not None and spot.version <= last_version:
            return False

        if spot.id in self._tracked:
            event_type = ChangeType.REMOVE if spot.is_terminal else ChangeType.UPDATE
        elif self.predicate.matches(spot):
            event_type = ChangeType.ADD
        else:
            if self._reloading:
                # An older copy may still come back from the reload
                self._versions[spot.id] = spot.version
            return False

        return self._enqueue(event_type, spot)

    def reset(self) -> None:
        """Forget every delivered spot and drop queued events.

        The subscriber is expected to discard its view too; the next
        ``prime`` re-sends the whole matching set.
        """
        dropped = len(self.drain())
        self._tracked.clear()
        self._versions.clear()
        self.lost = False
        self._reloading = True
        logger.debug("Subscription %s reset (%d queued events dropped)", self.id, dropped)

    def prime(self, spots: Iterable[SpotRecord]) -> int:
        """Queue an ``add`` for each spot not already delivered at its version or newer."""
        self._reloading = False
        count = 0
        for spot in spots:
            last_version = self._versions.get(spot.id)
            if last_version is not None and spot.version <= last_version:
                continue
            if not self._enqueue(ChangeType.ADD, spot):
                break
            count += 1
        return count

    async def resync(self, load: SpotLoader) -> int:
        """Replace the subscriber's view with a fresh read of the matching set.

        Changes committed while ``load`` runs are queued as usual, and a
        reloaded copy older than one of them is skipped.
        """
        self.reset()
        try:
            spots = await load(self.predicate)
        finally:
            self._reloading = False
        return self.prime(spots)

    def _enqueue(self, event_type: ChangeType, spot: SpotRecord) -> bool:
        event = SpotChangeEvent(type=event_type, spot=spot, timestamp=utcnow())
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Subscription %s overflowed; subscriber must resync", self.id)
            self.lost = True
            self._tracked.clear()
            return False

        self._versions[spot.id] = spot.version
        if event_type == ChangeType.REMOVE or spot.is_terminal:
            self._tracked.discard(spot.id)
        else:
            self._tracked.add(spot.id)
        return True

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def next_event(self, timeout: Optional[float] = None) -> Optional[SpotChangeEvent]:
        """Wait for the next event; None if ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def drain(self) -> list[SpotChangeEvent]:
        """Return every event already queued without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    async def events(self) -> AsyncIterator[SpotChangeEvent]:
        while not self.closed:
            yield await self._queue.get()


class ChangeFeed:
    """In-process registry of subscriptions fed by SpotStore commits."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, change: SpotChange) -> int:
        """Offer a committed change to every subscriber; returns deliveries."""
        delivered = 0
        for sub in list(self._subscriptions.values()):
            if sub.offer(change):
                delivered += 1
        logger.debug(
            "Spot %s v%d (%s) delivered to %d/%d subscribers",
            change.new.id, change.new.version, change.new.status.value,
            delivered, len(self._subscriptions),
        )
        return delivered

    @asynccontextmanager
    async def subscribe(self, predicate: Optional[SpotPredicate] = None) -> AsyncIterator[Subscription]:
        sub = Subscription(predicate or SpotPredicate(), self.queue_size)
        self._subscriptions[sub.id] = sub
        logger.info("Change feed subscriber %s registered: %s", sub.id, sub.predicate.model_dump(exclude_none=True))
        try:
            yield sub
        finally:
            sub.closed = True
            self._subscriptions.pop(sub.id, None)
            logger.info("Change feed subscriber %s released", sub.id)
