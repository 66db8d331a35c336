"""Domain enumerations for spot handoff.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class SpotStatus(str, Enum):
    """Lifecycle status of a posted spot."""

    AVAILABLE = "available"
    RESERVED = "reserved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Statuses a spot never leaves
TERMINAL_STATES: frozenset[SpotStatus] = frozenset(
    {SpotStatus.COMPLETED, SpotStatus.CANCELLED, SpotStatus.EXPIRED}
)


class SpotCategory(str, Enum):
    """Kind of parking the spot offers."""

    STREET = "street"
    GARAGE = "garage"
    LOT = "lot"
    DRIVEWAY = "driveway"


class SpotActor(str, Enum):
    """Who is performing a spot transition."""

    OWNER = "owner"
    RESERVER = "reserver"
    SYSTEM = "system"


class SpotEventType(str, Enum):
    """Audit event types recorded on every accepted transition."""

    CREATED = "created"
    RESERVED = "reserved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ChangeType(str, Enum):
    """Change feed event kinds."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


class GpsFailure(str, Enum):
    """Device-side GPS acquisition failures reported by the client."""

    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"


class ErrorCategory(str, Enum):
    """Broad error families; drives retry guidance and HTTP mapping."""

    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    CONCURRENCY = "concurrency"
    EXTERNAL = "external"
    NOT_FOUND = "not_found"


class SpotErrorCode(str, Enum):
    """Every typed failure the engine can return."""

    # Validation
    INVALID_ADDRESS = "invalid_address"
    INVALID_PRICE = "invalid_price"
    INVALID_TIMING = "invalid_timing"
    LOCATION_NOT_VERIFIED = "location_not_verified"
    INVALID_TRANSITION = "invalid_transition"
    SPOT_EXPIRED = "spot_expired"
    # Authorization
    NOT_OWNER = "not_owner"
    CANNOT_RESERVE_OWN_SPOT = "cannot_reserve_own_spot"
    # Concurrency
    CONFLICT = "conflict"
    # External dependencies
    ADDRESS_NOT_FOUND = "address_not_found"
    GEOCODE_UNAVAILABLE = "geocode_unavailable"
    TIMEOUT = "timeout"
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    # Not found
    NOT_FOUND = "not_found"

    @property
    def category(self) -> ErrorCategory:
        return ERROR_CATEGORIES[self]


E = SpotErrorCode

ERROR_CATEGORIES: dict[SpotErrorCode, ErrorCategory] = {
    E.INVALID_ADDRESS: ErrorCategory.VALIDATION,
    E.INVALID_PRICE: ErrorCategory.VALIDATION,
    E.INVALID_TIMING: ErrorCategory.VALIDATION,
    E.LOCATION_NOT_VERIFIED: ErrorCategory.VALIDATION,
    E.INVALID_TRANSITION: ErrorCategory.VALIDATION,
    E.SPOT_EXPIRED: ErrorCategory.VALIDATION,
    E.NOT_OWNER: ErrorCategory.AUTHORIZATION,
    E.CANNOT_RESERVE_OWN_SPOT: ErrorCategory.AUTHORIZATION,
    E.CONFLICT: ErrorCategory.CONCURRENCY,
    E.ADDRESS_NOT_FOUND: ErrorCategory.EXTERNAL,
    E.GEOCODE_UNAVAILABLE: ErrorCategory.EXTERNAL,
    E.TIMEOUT: ErrorCategory.EXTERNAL,
    E.PERMISSION_DENIED: ErrorCategory.EXTERNAL,
    E.POSITION_UNAVAILABLE: ErrorCategory.EXTERNAL,
    E.NOT_FOUND: ErrorCategory.NOT_FOUND,
}

GPS_FAILURE_ERRORS: dict[GpsFailure, SpotErrorCode] = {
    GpsFailure.PERMISSION_DENIED: E.PERMISSION_DENIED,
    GpsFailure.POSITION_UNAVAILABLE: E.POSITION_UNAVAILABLE,
    GpsFailure.TIMEOUT: E.TIMEOUT,
}
