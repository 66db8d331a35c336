"""Shared test infrastructure for the Spot Handoff test suite.

Provides:
- session_factory: file-backed SQLite database per test (tables created)
- clock: controllable UTC clock injected into the engine
- fake_geocoder: in-memory Geocoder returning canned coordinates
- services: the full engine wired around the above
- make_spot: factory posting a verified spot
- api_client / auth_headers: httpx client against the FastAPI app
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from spot_handoff.app.config import Settings
from spot_handoff.app.dependencies import build_services
from spot_handoff.domain.results import VerificationResult
from spot_handoff.domain.schemas import SpotDraft
from spot_handoff.infra.database import build_engine, build_session_factory, init_db
from spot_handoff.services.auth_service import create_access_token
from spot_handoff.services.geocoding_service import GeoResult

OWNER_ID = "owner-1"
RESERVER_ID = "driver-1"

SPOT_LAT = 37.7749
SPOT_LNG = -122.4194

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGeocoder:
    """Geocoder double: every query resolves to ``result`` unless overridden."""

    def __init__(self, result: GeoResult | None = None):
        self.result = result or GeoResult(
            lat=SPOT_LAT,
            lng=SPOT_LNG,
            formatted_address="100 Market St, San Francisco, CA 94105, USA",
            city="San Francisco",
            location_type="ROOFTOP",
        )
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def geocode(self, query: str) -> GeoResult | None:
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        return self.result


# ---------------------------------------------------------------------------
# Database fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def session_factory(tmp_path):
    """Fresh file-backed SQLite database per test.

    A file (not ``:memory:``) so concurrent sessions really are separate
    connections contending for the write lock.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'spots.db'}")
    await init_db(engine)
    yield build_session_factory(engine)
    await engine.dispose()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_geocoder():
    return FakeGeocoder()


@pytest.fixture
def settings():
    return Settings(
        google_maps_api_key="test-key",
        sweep_interval_seconds=60,
        feed_queue_size=32,
    )


@pytest.fixture
def services(session_factory, settings, fake_geocoder, clock):
    return build_services(session_factory, settings=settings, geocoder=fake_geocoder, clock=clock)


def verified_for(draft: SpotDraft, lat: float = SPOT_LAT, lng: float = SPOT_LNG) -> VerificationResult:
    return VerificationResult(
        verified=True,
        address=draft.address,
        city=draft.city,
        distance_meters=4.2,
        resolved_lat=lat,
        resolved_lng=lng,
        formatted_address=f"{draft.address}, {draft.city}",
    )


def make_draft(clock: FakeClock, **overrides) -> SpotDraft:
    fields = {
        "address": "100 Market St",
        "city": "San Francisco",
        "description": "In front of the blue door",
        "price": 5.0,
        "category": "street",
        "available_at": clock() + timedelta(minutes=30),
        "duration": 30,
    }
    fields.update(overrides)
    return SpotDraft(**fields)


@pytest.fixture
def make_spot(services, clock):
    """Factory that posts a verified spot and returns its SpotRecord.

    Usage:
        spot = await make_spot(price=7.5, city="Oakland")
    """
    async def _factory(owner_id: str = OWNER_ID, lat: float = SPOT_LAT, lng: float = SPOT_LNG, **overrides):
        draft = make_draft(clock, **overrides)
        result = await services.lifecycle.create(draft, owner_id, verified_for(draft, lat, lng))
        assert result.ok, result.message
        return result.spot

    return _factory


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def auth_headers():
    """Factory for Bearer headers: ``auth_headers("driver-1")``."""
    def _factory(user_id: str = OWNER_ID) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _factory


@pytest.fixture
async def api_client(services):
    from spot_handoff.app.main import app

    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
