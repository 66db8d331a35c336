"""Pydantic v2 schemas for API request/response validation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from spot_handoff.domain.clock import as_utc
from spot_handoff.domain.enums import TERMINAL_STATES, ChangeType, GpsFailure, SpotCategory, SpotStatus


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------


class GpsFix(BaseModel):
    """A device GPS reading already acquired by the client."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy_m: float | None = None
    captured_at: datetime | None = None


class LocationContext(BaseModel):
    """Per-request location context: either a fix or the reason there is none."""

    fix: GpsFix | None = None
    failure: GpsFailure | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "LocationContext":
        if (self.fix is None) == (self.failure is None):
            raise ValueError("Provide exactly one of 'fix' or 'failure'")
        return self


class VerifyLocationRequest(BaseModel):
    address: str
    city: str
    location: LocationContext


class VerificationResponse(BaseModel):
    verified: bool
    distance_meters: float | None = None
    resolved_lat: float | None = None
    resolved_lng: float | None = None
    formatted_address: str | None = None
    error: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Spots
# ---------------------------------------------------------------------------


class SpotDraft(BaseModel):
    """What a poster submits. Bounds are enforced by the lifecycle, not here."""

    address: str
    city: str
    description: str | None = None
    price: float
    category: SpotCategory = SpotCategory.STREET
    available_at: datetime
    duration: int

    @field_validator("available_at", mode="after")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class CreateSpotRequest(BaseModel):
    draft: SpotDraft
    location: LocationContext


class SpotRecord(BaseModel):
    """Immutable snapshot of a stored spot."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    address: str
    city: str
    description: str | None = None
    lat: float
    lng: float
    location_verified: bool
    price: float
    category: SpotCategory
    available_at: datetime
    duration: int
    expires_at: datetime
    owner_id: str
    reserved_by: str | None = None
    status: SpotStatus
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    reserved_at: datetime | None = None
    completed_at: datetime | None = None
    handoff_count: int = 0

    @field_validator(
        "available_at", "expires_at", "created_at", "updated_at", "reserved_at", "completed_at",
        mode="after",
    )
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES


class NearbySpot(BaseModel):
    spot: SpotRecord
    distance_meters: float


class MySpotsResponse(BaseModel):
    posted: list[SpotRecord]
    reserved: list[SpotRecord]


class OwnerStats(BaseModel):
    total_posted: int = 0
    currently_reserved: int = 0
    completed_handoffs: int = 0


# ---------------------------------------------------------------------------
# Change feed
# ---------------------------------------------------------------------------


class SpotPredicate(BaseModel):
    """Subscription filter; every field set must match."""

    status: SpotStatus | None = None
    city: str | None = None
    category: SpotCategory | None = None
    owner_id: str | None = None
    reserved_by: str | None = None
    max_price: float | None = None

    def matches(self, spot: SpotRecord) -> bool:
        if self.status is not None and spot.status != self.status:
            return False
        if self.city is not None and spot.city.lower() != self.city.lower():
            return False
        if self.category is not None and spot.category != self.category:
            return False
        if self.owner_id is not None and spot.owner_id != self.owner_id:
            return False
        if self.reserved_by is not None and spot.reserved_by != self.reserved_by:
            return False
        if self.max_price is not None and spot.price > self.max_price:
            return False
        return True


class SpotChangeEvent(BaseModel):
    type: ChangeType
    spot: SpotRecord
    timestamp: datetime
