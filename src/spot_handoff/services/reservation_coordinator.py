"""Arbitrates concurrent reservation attempts on the same spot.

Callers may be in different processes, so nothing here locks: each attempt
reads the spot, checks the rules, then issues a conditional write that only
matches while the row is still ``available`` at the version it read. The
database accepts exactly one such write; every other attempt sees its write
miss and gets ``conflict``. Acceptance order decides the winner, not request
order.
"""

import logging
from datetime import datetime
from typing import Optional

from spot_handoff.domain.clock import Clock, utcnow
from spot_handoff.domain.enums import SpotActor, SpotErrorCode, SpotEventType, SpotStatus
from spot_handoff.domain.results import SpotLifecycleError, SpotResult
from spot_handoff.domain.schemas import SpotRecord
from spot_handoff.services.spot_lifecycle import SpotLifecycle, is_expired, validate_transition

logger = logging.getLogger(__name__)


class ReservationCoordinator:
    """Makes available -> reserved safe under any number of racing callers."""

    def __init__(self, lifecycle: SpotLifecycle, clock: Optional[Clock] = None):
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self.clock = clock or lifecycle.clock or utcnow

    def check_reservable(self, spot: SpotRecord, caller_id: str, now: datetime) -> None:
        """Raise SpotLifecycleError if ``caller_id`` cannot reserve ``spot`` right now."""
        if spot.owner_id == caller_id:
            raise SpotLifecycleError(
                SpotErrorCode.CANNOT_RESERVE_OWN_SPOT, "You cannot reserve your own spot",
            )
        if spot.status == SpotStatus.EXPIRED:
            raise SpotLifecycleError(SpotErrorCode.SPOT_EXPIRED, "This spot has expired")
        if spot.status != SpotStatus.AVAILABLE:
            raise SpotLifecycleError(
                SpotErrorCode.CONFLICT, f"Spot is no longer available ({spot.status.value})",
            )
        if is_expired(spot, now):
            raise SpotLifecycleError(SpotErrorCode.SPOT_EXPIRED, "This spot has expired")
        validate_transition(spot.status, SpotStatus.RESERVED, SpotActor.RESERVER)

    async def reserve(self, spot_id: str, caller_id: str) -> SpotResult:
        """Attempt to claim ``spot_id`` for ``caller_id``.

        On success the spot is ``reserved`` with ``reserved_by`` set and a
        conversation thread between owner and reserver exists.
        """
        now = self.clock()
        spot = await self.store.get(spot_id)
        if spot is None:
            return SpotResult.failure(SpotErrorCode.NOT_FOUND, f"Spot {spot_id} not found")

        try:
            self.check_reservable(spot, caller_id, now)
        except SpotLifecycleError as e:
            logger.info("Reservation of %s by %s refused: %s", spot_id, caller_id, e)
            return SpotResult.from_error(e, spot)

        updated = await self.store.conditional_update(
            spot,
            {
                "status": SpotStatus.RESERVED.value,
                "reserved_by": caller_id,
                "reserved_at": now,
                "updated_at": now,
            },
            SpotEventType.RESERVED,
            SpotActor.RESERVER,
            caller_id,
            open_conversation=True,
        )

        if updated is None:
            current = await self.store.get(spot_id)
            if current is None:
                return SpotResult.failure(SpotErrorCode.NOT_FOUND, f"Spot {spot_id} not found")
            logger.info(
                "Reservation of %s by %s lost the race (now %s)",
                spot_id, caller_id, current.status.value,
            )
            return SpotResult.failure(
                SpotErrorCode.CONFLICT,
                "Someone else got this spot first",
                current,
            )

        logger.info("Spot %s reserved by %s", spot_id, caller_id)
        return SpotResult.success(updated)
