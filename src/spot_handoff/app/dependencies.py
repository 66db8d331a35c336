"""Service wiring shared by the HTTP routes, the WebSocket feed and the sweeper."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spot_handoff.app.config import Settings, get_settings
from spot_handoff.domain.clock import Clock, utcnow
from spot_handoff.domain.enums import ErrorCategory, SpotErrorCode
from spot_handoff.services.change_feed import ChangeFeed
from spot_handoff.services.expiration_sweeper import ExpirationSweeper
from spot_handoff.services.geocoding_service import Geocoder, build_geocoder
from spot_handoff.services.location_verifier import LocationVerifier
from spot_handoff.services.reservation_coordinator import ReservationCoordinator
from spot_handoff.services.spot_lifecycle import SpotLifecycle
from spot_handoff.services.spot_store import SpotStore

logger = logging.getLogger(__name__)


@dataclass
class SpotServices:
    settings: Settings
    feed: ChangeFeed
    store: SpotStore
    verifier: LocationVerifier
    lifecycle: SpotLifecycle
    coordinator: ReservationCoordinator
    sweeper: ExpirationSweeper


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
    geocoder: Optional[Geocoder] = None,
    clock: Clock = utcnow,
) -> SpotServices:
    """Assemble the engine around one session factory and one change feed."""
    settings = settings or get_settings()
    feed = ChangeFeed(queue_size=settings.feed_queue_size)
    store = SpotStore(session_factory, feed)
    verifier = LocationVerifier(
        geocoder or build_geocoder(),
        tolerance_meters=settings.location_tolerance_meters,
    )
    lifecycle = SpotLifecycle(store, verifier, settings=settings, clock=clock)
    return SpotServices(
        settings=settings,
        feed=feed,
        store=store,
        verifier=verifier,
        lifecycle=lifecycle,
        coordinator=ReservationCoordinator(lifecycle, clock=clock),
        sweeper=ExpirationSweeper(lifecycle, interval_seconds=settings.sweep_interval_seconds),
    )


def get_services(request: Request) -> SpotServices:
    """Dependency: the services built at startup."""
    return request.app.state.services


# ---------------------------------------------------------------------------
# Error code -> HTTP status
# ---------------------------------------------------------------------------

_STATUS_BY_CODE: dict[SpotErrorCode, int] = {
    SpotErrorCode.SPOT_EXPIRED: status.HTTP_410_GONE,
    SpotErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    SpotErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    SpotErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    SpotErrorCode.ADDRESS_NOT_FOUND: status.HTTP_422_UNPROCESSABLE_ENTITY,
    SpotErrorCode.GEOCODE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    SpotErrorCode.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    SpotErrorCode.PERMISSION_DENIED: status.HTTP_400_BAD_REQUEST,
    SpotErrorCode.POSITION_UNAVAILABLE: status.HTTP_400_BAD_REQUEST,
}

_STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCategory.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorCategory.CONCURRENCY: status.HTTP_409_CONFLICT,
    ErrorCategory.EXTERNAL: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def http_status_for(code: SpotErrorCode) -> int:
    return _STATUS_BY_CODE.get(code) or _STATUS_BY_CATEGORY[code.category]


def error_response(code: SpotErrorCode, message: Optional[str]) -> HTTPException:
    return HTTPException(
        status_code=http_status_for(code),
        detail={"code": code.value, "category": code.category.value, "message": message or code.value},
    )
