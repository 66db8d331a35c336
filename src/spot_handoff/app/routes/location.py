"""Location verification endpoint (pre-flight check before posting a spot)."""

import logging

from fastapi import APIRouter, Depends

from spot_handoff.app.dependencies import SpotServices, error_response, get_services
from spot_handoff.app.routes.auth import get_caller_id
from spot_handoff.domain.enums import SpotErrorCode
from spot_handoff.domain.results import VerificationResult
from spot_handoff.domain.schemas import VerificationResponse, VerifyLocationRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/location", tags=["location"])


def to_response(result: VerificationResult) -> VerificationResponse:
    return VerificationResponse(
        verified=result.verified,
        distance_meters=result.distance_meters,
        resolved_lat=result.resolved_lat,
        resolved_lng=result.resolved_lng,
        formatted_address=result.formatted_address,
        error=result.error.value if result.error else None,
        message=result.message,
    )


@router.post("/verify", response_model=VerificationResponse)
async def verify_location(
    body: VerifyLocationRequest,
    caller_id: str = Depends(get_caller_id),
    services: SpotServices = Depends(get_services),
):
    """Check the caller is standing at the address.

    A mismatch is a normal answer (``verified: false`` with the distance);
    GPS and geocoder failures are errors.
    """
    result = await services.verifier.verify(body.address, body.city, body.location)
    logger.info(
        "Location check for %s (%s, %s): verified=%s", caller_id, body.address, body.city, result.verified,
    )
    if not result.verified and result.error not in (None, SpotErrorCode.LOCATION_NOT_VERIFIED):
        raise error_response(result.error, result.message)
    return to_response(result)
