"""Geofence check: is the poster standing at the address they are listing?"""

import logging

from spot_handoff.domain.enums import GPS_FAILURE_ERRORS, SpotErrorCode
from spot_handoff.domain.results import VerificationResult
from spot_handoff.domain.schemas import LocationContext
from spot_handoff.services.geo_math import distance_meters
from spot_handoff.services.geocoding_service import (
    GeocodeTimeoutError,
    GeocodeUnavailableError,
    Geocoder,
)

logger = logging.getLogger(__name__)

# 200 ft
DEFAULT_TOLERANCE_METERS = 61.0


class LocationVerifier:
    """Resolves an address and compares it to the caller's GPS fix.

    One geocoder call per verification, no retries. The verified result
    carries the geocoded coordinates, not the raw fix, so stored spot
    locations are not skewed by GPS noise.
    """

    def __init__(self, geocoder: Geocoder, tolerance_meters: float = DEFAULT_TOLERANCE_METERS):
        self.geocoder = geocoder
        self.tolerance_meters = tolerance_meters

    async def verify(self, address: str, city: str, context: LocationContext) -> VerificationResult:
        address = (address or "").strip()
        city = (city or "").strip()

        if context.failure is not None:
            code = GPS_FAILURE_ERRORS[context.failure]
            return VerificationResult.failure(
                code, f"Could not get your location: {context.failure.value}", address, city,
            )

        if not address or not city:
            return VerificationResult.failure(
                SpotErrorCode.INVALID_ADDRESS, "Address and city are required", address, city,
            )

        query = f"{address}, {city}"
        try:
            geo = await self.geocoder.geocode(query)
        except GeocodeTimeoutError:
            return VerificationResult.failure(
                SpotErrorCode.TIMEOUT, "Address lookup timed out, try again", address, city,
            )
        except GeocodeUnavailableError:
            return VerificationResult.failure(
                SpotErrorCode.GEOCODE_UNAVAILABLE, "Address lookup is unavailable, try again", address, city,
            )

        if geo is None:
            return VerificationResult.failure(
                SpotErrorCode.ADDRESS_NOT_FOUND, f"Could not find '{query}'", address, city,
            )

        fix = context.fix
        distance = distance_meters(fix.lat, fix.lng, geo.lat, geo.lng)
        verified = distance <= self.tolerance_meters

        logger.info(
            "Location check for %r: distance=%.1fm tolerance=%.1fm verified=%s",
            query, distance, self.tolerance_meters, verified,
        )

        if not verified:
            return VerificationResult(
                verified=False,
                address=address,
                city=city,
                distance_meters=distance,
                resolved_lat=geo.lat,
                resolved_lng=geo.lng,
                formatted_address=geo.formatted_address,
                error=SpotErrorCode.LOCATION_NOT_VERIFIED,
                message=(
                    f"You are {distance:.0f}m from this address; "
                    f"you must be within {self.tolerance_meters:.0f}m to post it"
                ),
            )

        return VerificationResult(
            verified=True,
            address=address,
            city=city,
            distance_meters=distance,
            resolved_lat=geo.lat,
            resolved_lng=geo.lng,
            formatted_address=geo.formatted_address,
        )
