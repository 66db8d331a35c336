"""Result types returned by the engine's public operations.

Every lifecycle, reservation and verification call returns a result instead
of raising for domain failures. Callers check ``result.ok``; on failure
``result.error`` is a ``SpotErrorCode`` whose ``category`` says whether a
retry can help.
"""

from dataclasses import dataclass
from typing import Optional

from spot_handoff.domain.enums import SpotErrorCode
from spot_handoff.domain.schemas import SpotRecord


class SpotLifecycleError(Exception):
    """Raised inside the engine when an operation must be refused."""

    def __init__(self, code: SpotErrorCode, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"{code.value}: {reason}")


@dataclass
class SpotResult:
    """Outcome of a spot operation.

    Attributes:
        ok: True if the write was accepted.
        spot: The spot as stored after the write (or as last read on failure).
        error: Failure code when ``ok`` is False.
        message: Human-readable failure description.
    """

    ok: bool
    spot: Optional[SpotRecord] = None
    error: Optional[SpotErrorCode] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, spot: SpotRecord) -> "SpotResult":
        return cls(ok=True, spot=spot)

    @classmethod
    def failure(
        cls,
        error: SpotErrorCode,
        message: str,
        spot: Optional[SpotRecord] = None,
    ) -> "SpotResult":
        return cls(ok=False, spot=spot, error=error, message=message)

    @classmethod
    def from_error(cls, exc: SpotLifecycleError, spot: Optional[SpotRecord] = None) -> "SpotResult":
        return cls.failure(exc.code, exc.reason, spot)


@dataclass
class VerificationResult:
    """Outcome of a geofence check.

    ``resolved_lat``/``resolved_lng`` are the geocoded address coordinates;
    they become the spot's stored location when ``verified`` is True.
    """

    verified: bool
    address: str = ""
    city: str = ""
    distance_meters: Optional[float] = None
    resolved_lat: Optional[float] = None
    resolved_lng: Optional[float] = None
    formatted_address: Optional[str] = None
    error: Optional[SpotErrorCode] = None
    message: Optional[str] = None

    @classmethod
    def failure(
        cls,
        error: SpotErrorCode,
        message: str,
        address: str = "",
        city: str = "",
    ) -> "VerificationResult":
        return cls(verified=False, address=address, city=city, error=error, message=message)


@dataclass
class SweepReport:
    """Counts from one expiration sweep pass."""

    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0
