"""Spot API: post, browse, reserve and close out parking spots.

Every mutation goes through SpotLifecycle or ReservationCoordinator; a
failed ``SpotResult`` becomes an HTTP error with ``{"code", "message"}``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from spot_handoff.app.dependencies import SpotServices, error_response, get_services
from spot_handoff.app.routes.auth import get_caller_id
from spot_handoff.app.routes.location import to_response
from spot_handoff.domain.enums import SpotCategory
from spot_handoff.domain.results import SpotResult
from spot_handoff.domain.schemas import (
    CreateSpotRequest,
    MySpotsResponse,
    NearbySpot,
    OwnerStats,
    SpotRecord,
)
from spot_handoff.services.geo_math import miles_to_meters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/spots", tags=["spots"])


def _unwrap(result: SpotResult) -> SpotRecord:
    if not result.ok:
        raise error_response(result.error, result.message)
    return result.spot


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_spot(
    body: CreateSpotRequest,
    caller_id: str = Depends(get_caller_id),
    services: SpotServices = Depends(get_services),
):
    """Verify the poster's location against the address, then list the spot."""
    verification, result = await services.lifecycle.verify_and_create(body.draft, caller_id, body.location)
    spot = _unwrap(result)
    return {"spot": spot, "verification": to_response(verification)}


@router.get("", response_model=list[SpotRecord])
async def list_spots(
    city: Optional[str] = Query(None),
    max_price: Optional[float] = Query(None, gt=0),
    category: Optional[SpotCategory] = Query(None),
    services: SpotServices = Depends(get_services),
):
    """Available, unexpired spots, soonest first."""
    return await services.lifecycle.list_available(city=city, max_price=max_price, category=category)


@router.get("/nearby", response_model=list[NearbySpot])
async def nearby_spots(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_miles: Optional[float] = Query(None, gt=0),
    services: SpotServices = Depends(get_services),
):
    radius = radius_miles if radius_miles is not None else services.settings.search_radius_miles
    return await services.lifecycle.nearby(lat, lng, miles_to_meters(radius))


@router.get("/mine", response_model=MySpotsResponse)
async def my_spots(
    caller_id: str = Depends(get_caller_id),
    services: SpotServices = Depends(get_services),
):
    """Spots the caller posted and spots the caller reserved."""
    return await services.lifecycle.spots_for_user(caller_id)


@router.get("/mine/stats", response_model=OwnerStats)
async def my_stats(
    caller_id: str = Depends(get_caller_id),
    services: SpotServices = Depends(get_services),
):
    return await services.lifecycle.stats_for_owner(caller_id)


@router.get("/{spot_id}", response_model=SpotRecord)
async def get_spot(spot_id: str, services: SpotServices = Depends(get_services)):
    return _unwrap(await services.lifecycle.get(spot_id))


@router.post("/{spot_id}/reserve", response_model=SpotRecord)
async def reserve_spot(
    spot_id: str,
    caller_id: str = Depends(get_caller_id),
    services: SpotServices = Depends(get_services),
):
    return _unwrap(await services.coordinator.reserve(spot_id, caller_id))


@router.post("/{spot_id}/complete", response_model=SpotRecord)
async def complete_spot(
    spot_id: str,
    caller_id: str = Depends(get_caller_id),
    services: SpotServices = Depends(get_services),
):
    """Owner confirms the handoff happened."""
    return _unwrap(await services.lifecycle.complete(spot_id, caller_id))


@router.post("/{spot_id}/cancel", response_model=SpotRecord)
async def cancel_spot(
    spot_id: str,
    caller_id: str = Depends(get_caller_id),
    services: SpotServices = Depends(get_services),
):
    return _unwrap(await services.lifecycle.cancel(spot_id, caller_id))
