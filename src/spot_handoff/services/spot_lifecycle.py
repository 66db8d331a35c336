"""Spot state machine: validates transitions and applies them through the store.

Lifecycle: available -> reserved -> completed, with available -> cancelled
(owner) and available -> expired (sweeper) as the other exits. Terminal
spots never change status again. Every transition is a conditional write on
(status, version); a writer that loses the race gets ``conflict``.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_

from spot_handoff.app.config import Settings, get_settings
from spot_handoff.domain.clock import Clock, as_utc, utcnow
from spot_handoff.domain.enums import (
    SpotActor,
    SpotCategory,
    SpotErrorCode,
    SpotEventType,
    SpotStatus,
    TERMINAL_STATES,
)
from spot_handoff.domain.models import Spot
from spot_handoff.domain.results import SpotLifecycleError, SpotResult, VerificationResult
from spot_handoff.domain.schemas import (
    LocationContext,
    MySpotsResponse,
    NearbySpot,
    OwnerStats,
    SpotDraft,
    SpotPredicate,
    SpotRecord,
)
from spot_handoff.services.geo_math import distance_meters
from spot_handoff.services.location_verifier import LocationVerifier
from spot_handoff.services.spot_store import SpotStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transition map: from_status -> {to_status: set_of_allowed_actors}
# ---------------------------------------------------------------------------

S = SpotStatus
A = SpotActor

TRANSITION_MAP: dict[SpotStatus, dict[SpotStatus, set[SpotActor]]] = {
    S.AVAILABLE: {
        S.RESERVED: {A.RESERVER},
        S.CANCELLED: {A.OWNER},
        S.EXPIRED: {A.SYSTEM},
    },
    S.RESERVED: {
        S.COMPLETED: {A.OWNER},
    },
}

# Rough meters per degree of latitude, for the nearby bounding box
_METERS_PER_DEGREE = 111_320.0


def get_allowed_transitions(current: SpotStatus, actor: SpotActor) -> list[SpotStatus]:
    """Return the statuses ``actor`` may move a spot to from ``current``."""
    return [
        target
        for target, actors in TRANSITION_MAP.get(current, {}).items()
        if actor in actors
    ]


def validate_transition(current: SpotStatus, target: SpotStatus, actor: SpotActor) -> None:
    """Raise SpotLifecycleError unless ``actor`` may move a spot from ``current`` to ``target``.

    Asking for a transition whose target the spot already has means a
    racing caller applied it first: that is a ``conflict``, not an invalid
    request.
    """
    if current == target:
        raise SpotLifecycleError(
            SpotErrorCode.CONFLICT, f"Spot is already {target.value}",
        )

    if current in TERMINAL_STATES:
        raise SpotLifecycleError(
            SpotErrorCode.INVALID_TRANSITION,
            f"No transitions allowed from {current.value}",
        )

    if target not in TRANSITION_MAP.get(current, {}):
        raise SpotLifecycleError(
            SpotErrorCode.INVALID_TRANSITION,
            f"Transition from {current.value} to {target.value} is not allowed",
        )

    if target not in get_allowed_transitions(current, actor):
        raise SpotLifecycleError(
            SpotErrorCode.INVALID_TRANSITION,
            f"Actor {actor.value} is not permitted to move a spot to {target.value}",
        )


def is_expired(spot: SpotRecord, now: datetime) -> bool:
    """A listing is void once its hard ceiling has passed, whatever its status."""
    return now >= as_utc(spot.expires_at)


class SpotLifecycle:
    """Creates spots and applies owner/system transitions."""

    def __init__(
        self,
        store: SpotStore,
        verifier: Optional[LocationVerifier] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.verifier = verifier
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def validate_draft(self, draft: SpotDraft, verification: VerificationResult, now: datetime) -> None:
        """Raise SpotLifecycleError for the first creation rule the draft breaks."""
        self.validate_terms(draft, now)
        self.validate_location(draft, verification)

    def validate_terms(self, draft: SpotDraft, now: datetime) -> None:
        """Address, price and timing rules; no network needed."""
        s = self.settings

        if not draft.address.strip() or not draft.city.strip():
            raise SpotLifecycleError(SpotErrorCode.INVALID_ADDRESS, "Address and city are required")

        price = draft.price
        if math.isnan(price) or not (s.min_price <= price <= s.max_price):
            raise SpotLifecycleError(
                SpotErrorCode.INVALID_PRICE,
                f"Price must be between {s.min_price:.2f} and {s.max_price:.2f}",
            )

        lead = as_utc(draft.available_at) - now
        if lead < timedelta(minutes=s.min_lead_minutes):
            raise SpotLifecycleError(
                SpotErrorCode.INVALID_TIMING,
                f"Spot must become available at least {s.min_lead_minutes} minutes from now",
            )
        if lead > timedelta(minutes=s.max_lead_minutes):
            raise SpotLifecycleError(
                SpotErrorCode.INVALID_TIMING,
                f"Spot must become available within {s.max_lead_minutes} minutes from now",
            )
        if not (1 <= draft.duration <= s.max_spot_duration):
            raise SpotLifecycleError(
                SpotErrorCode.INVALID_TIMING,
                f"Duration must be between 1 and {s.max_spot_duration} minutes",
            )

    def validate_location(self, draft: SpotDraft, verification: VerificationResult) -> None:
        if not verification.verified or verification.resolved_lat is None or verification.resolved_lng is None:
            raise SpotLifecycleError(
                SpotErrorCode.LOCATION_NOT_VERIFIED,
                verification.message or "Location has not been verified",
            )
        if (
            verification.address.strip().lower() != draft.address.strip().lower()
            or verification.city.strip().lower() != draft.city.strip().lower()
        ):
            raise SpotLifecycleError(
                SpotErrorCode.LOCATION_NOT_VERIFIED,
                "Location was verified for a different address",
            )

    async def create(
        self,
        draft: SpotDraft,
        owner_id: str,
        verification: VerificationResult,
    ) -> SpotResult:
        """Store a new ``available`` spot at the verified coordinates."""
        now = self.clock()
        try:
            self.validate_draft(draft, verification, now)
        except SpotLifecycleError as e:
            logger.info("Spot creation refused for owner=%s: %s", owner_id, e)
            return SpotResult.from_error(e)

        available_at = as_utc(draft.available_at)
        record = await self.store.insert(
            {
                "id": str(uuid.uuid4()),
                "address": draft.address.strip(),
                "city": draft.city.strip(),
                "description": draft.description,
                "lat": verification.resolved_lat,
                "lng": verification.resolved_lng,
                "location_verified": True,
                "price": round(draft.price, 2),
                "category": draft.category.value,
                "available_at": available_at,
                "duration": draft.duration,
                "expires_at": available_at + timedelta(minutes=draft.duration),
                "owner_id": owner_id,
                "reserved_by": None,
                "status": S.AVAILABLE.value,
                "version": 1,
                "created_at": now,
                "updated_at": now,
                "handoff_count": 0,
            },
            actor_id=owner_id,
        )
        logger.info("Spot %s posted by %s at %s, %s", record.id, owner_id, record.address, record.city)
        return SpotResult.success(record)

    async def verify_and_create(
        self,
        draft: SpotDraft,
        owner_id: str,
        context: LocationContext,
    ) -> tuple[VerificationResult, SpotResult]:
        """Run the geofence check for this request, then create if it passed.

        Terms are checked first so a bad price or time never costs a
        geocoder call.
        """
        if self.verifier is None:
            raise RuntimeError("SpotLifecycle was built without a LocationVerifier")
        try:
            self.validate_terms(draft, self.clock())
        except SpotLifecycleError as e:
            return VerificationResult(verified=False), SpotResult.from_error(e)

        verification = await self.verifier.verify(draft.address, draft.city, context)
        if not verification.verified and verification.error not in (None, SpotErrorCode.LOCATION_NOT_VERIFIED):
            # The check never ran: surface the GPS or geocoder failure itself
            logger.info("Spot creation for owner=%s blocked: %s", owner_id, verification.error.value)
            return verification, SpotResult.failure(verification.error, verification.message or "")
        return verification, await self.create(draft, owner_id, verification)

    # ------------------------------------------------------------------
    # Owner / system transitions
    # ------------------------------------------------------------------

    async def _apply(
        self,
        spot_id: str,
        caller_id: str,
        target: SpotStatus,
        actor: SpotActor,
        event_type: SpotEventType,
    ) -> SpotResult:
        now = self.clock()
        spot = await self.store.get(spot_id)
        if spot is None:
            return SpotResult.failure(SpotErrorCode.NOT_FOUND, f"Spot {spot_id} not found")

        try:
            if actor == A.OWNER and spot.owner_id != caller_id:
                raise SpotLifecycleError(SpotErrorCode.NOT_OWNER, "Only the spot owner can do this")
            validate_transition(spot.status, target, actor)
            if target == S.CANCELLED and is_expired(spot, now):
                raise SpotLifecycleError(
                    SpotErrorCode.INVALID_TRANSITION, "Spot has already expired",
                )
        except SpotLifecycleError as e:
            return SpotResult.from_error(e, spot)

        values: dict = {"status": target.value, "updated_at": now}
        if target == S.COMPLETED:
            values["completed_at"] = now
            values["handoff_count"] = Spot.handoff_count + 1

        updated = await self.store.conditional_update(spot, values, event_type, actor, caller_id)
        if updated is None:
            return await self._lost_race(spot_id)

        logger.info("Spot %s: %s -> %s by %s", spot_id, spot.status.value, target.value, caller_id)
        return SpotResult.success(updated)

    async def _lost_race(self, spot_id: str) -> SpotResult:
        current = await self.store.get(spot_id)
        if current is None:
            return SpotResult.failure(SpotErrorCode.NOT_FOUND, f"Spot {spot_id} not found")
        return SpotResult.failure(
            SpotErrorCode.CONFLICT,
            f"Spot changed to {current.status.value} while this request was in flight",
            current,
        )

    async def complete(self, spot_id: str, caller_id: str) -> SpotResult:
        """Owner confirms the handoff happened."""
        return await self._apply(spot_id, caller_id, S.COMPLETED, A.OWNER, SpotEventType.COMPLETED)

    async def cancel(self, spot_id: str, caller_id: str) -> SpotResult:
        """Owner withdraws an unreserved, unexpired listing."""
        return await self._apply(spot_id, caller_id, S.CANCELLED, A.OWNER, SpotEventType.CANCELLED)

    async def expire(self, spot: SpotRecord, now: Optional[datetime] = None) -> SpotResult:
        """Retire an available spot past its ceiling.

        Conditioned on the exact version the caller read, so a reservation
        that landed in between makes this write miss.
        """
        now = now or self.clock()
        try:
            validate_transition(spot.status, S.EXPIRED, A.SYSTEM)
            if not is_expired(spot, now):
                raise SpotLifecycleError(SpotErrorCode.INVALID_TRANSITION, "Spot has not expired yet")
        except SpotLifecycleError as e:
            return SpotResult.from_error(e, spot)

        updated = await self.store.conditional_update(
            spot,
            {"status": S.EXPIRED.value, "updated_at": now},
            SpotEventType.EXPIRED,
            A.SYSTEM,
            "system",
            event_data={"expires_at": as_utc(spot.expires_at).isoformat()},
        )
        if updated is None:
            return await self._lost_race(spot.id)
        return SpotResult.success(updated)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, spot_id: str) -> SpotResult:
        spot = await self.store.get(spot_id)
        if spot is None:
            return SpotResult.failure(SpotErrorCode.NOT_FOUND, f"Spot {spot_id} not found")
        return SpotResult.success(spot)

    async def list_available(
        self,
        city: Optional[str] = None,
        max_price: Optional[float] = None,
        category: Optional[SpotCategory] = None,
    ) -> list[SpotRecord]:
        """Unexpired available spots, soonest first."""
        extra = [Spot.expires_at > self.clock()]
        if city:
            extra.append(Spot.city.icontains(city.strip(), autoescape=True))
        return await self.store.list_spots(
            SpotPredicate(status=S.AVAILABLE, max_price=max_price, category=category),
            *extra,
            order_by=Spot.available_at.asc(),
        )

    async def matching(self, predicate: SpotPredicate) -> list[SpotRecord]:
        """Current spots for a feed filter. Available spots past their ceiling are left out."""
        unexpired = or_(Spot.status != S.AVAILABLE.value, Spot.expires_at > self.clock())
        return await self.store.list_spots(predicate, unexpired)

    async def spots_for_user(self, user_id: str) -> MySpotsResponse:
        posted = await self.store.list_spots(SpotPredicate(owner_id=user_id))
        reserved = await self.store.list_spots(
            SpotPredicate(reserved_by=user_id),
            order_by=Spot.reserved_at.desc(),
        )
        return MySpotsResponse(posted=posted, reserved=reserved)

    async def stats_for_owner(self, owner_id: str) -> OwnerStats:
        counts = await self.store.count_by_status(owner_id)
        return OwnerStats(
            total_posted=sum(counts.values()),
            currently_reserved=counts.get(S.RESERVED.value, 0),
            completed_handoffs=counts.get(S.COMPLETED.value, 0),
        )

    async def nearby(self, lat: float, lng: float, radius_meters: float) -> list[NearbySpot]:
        """Unexpired available spots within ``radius_meters``, nearest first."""
        dlat = radius_meters / _METERS_PER_DEGREE
        dlng = radius_meters / (_METERS_PER_DEGREE * max(math.cos(math.radians(lat)), 1e-6))
        candidates = await self.store.find_in_box(
            lat - dlat, lat + dlat, lng - dlng, lng + dlng,
            SpotPredicate(status=S.AVAILABLE),
            Spot.expires_at > self.clock(),
        )

        rows = []
        for spot in candidates:
            d = distance_meters(lat, lng, spot.lat, spot.lng)
            if d <= radius_meters:
                rows.append(NearbySpot(spot=spot, distance_meters=d))
        rows.sort(key=lambda r: r.distance_meters)
        return rows
