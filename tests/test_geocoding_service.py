"""Tests for spot_handoff.services.geocoding_service.

All HTTP calls are mocked; no real Google API requests are made.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from spot_handoff.services.geocoding_service import (
    GOOGLE_GEOCODE_URL,
    GeocodeTimeoutError,
    GeocodeUnavailableError,
    GeocodingService,
    GeoResult,
    _MAX_CACHE_SIZE,
)

FAKE_API_KEY = "test-api-key-123"
PATCH_TARGET = "spot_handoff.services.geocoding_service.httpx.AsyncClient"


def _google_ok_response(
    lat: float = 37.7749,
    lng: float = -122.4194,
    location_type: str = "ROOFTOP",
    city: str = "San Francisco",
    formatted_address: str = "100 Market St, San Francisco, CA 94105, USA",
) -> dict:
    """Build a realistic Google Maps Geocoding API 'OK' response."""
    return {
        "status": "OK",
        "results": [
            {
                "formatted_address": formatted_address,
                "geometry": {
                    "location": {"lat": lat, "lng": lng},
                    "location_type": location_type,
                },
                "address_components": [
                    {"long_name": "100", "short_name": "100", "types": ["street_number"]},
                    {"long_name": "Market Street", "short_name": "Market St", "types": ["route"]},
                    {"long_name": city, "short_name": city, "types": ["locality", "political"]},
                    {"long_name": "California", "short_name": "CA", "types": ["administrative_area_level_1", "political"]},
                ],
            }
        ],
    }


def _make_mock_response(json_data: dict, status_code: int = 200) -> MagicMock:
    """Create a mock httpx.Response."""
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    resp.json.return_value = json_data
    if status_code >= 400:
        resp.raise_for_status.side_effect = httpx.HTTPStatusError(
            message="error",
            request=MagicMock(),
            response=resp,
        )
    else:
        resp.raise_for_status.return_value = None
    return resp


def _mock_client(response: MagicMock | None = None, side_effect: Exception | None = None) -> AsyncMock:
    client = AsyncMock(spec=httpx.AsyncClient)
    if side_effect is not None:
        client.get.side_effect = side_effect
    else:
        client.get.return_value = response
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


@pytest.fixture
def service() -> GeocodingService:
    return GeocodingService(api_key=FAKE_API_KEY, timeout=2.5)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseGoogleResponse:
    def test_parse_extracts_fields(self, service: GeocodingService) -> None:
        result = service._parse_google_response(_google_ok_response())

        assert result == GeoResult(
            lat=37.7749,
            lng=-122.4194,
            formatted_address="100 Market St, San Francisco, CA 94105, USA",
            city="San Francisco",
            location_type="ROOFTOP",
        )

    def test_zero_results_is_no_match(self, service: GeocodingService) -> None:
        assert service._parse_google_response({"status": "ZERO_RESULTS", "results": []}) is None

    def test_empty_results_is_no_match(self, service: GeocodingService) -> None:
        assert service._parse_google_response({"status": "OK", "results": []}) is None

    def test_missing_lat_lng_is_no_match(self, service: GeocodingService) -> None:
        data = {
            "status": "OK",
            "results": [{"geometry": {"location": {}}, "address_components": [], "formatted_address": ""}],
        }
        assert service._parse_google_response(data) is None

    @pytest.mark.parametrize("status", ["REQUEST_DENIED", "OVER_QUERY_LIMIT", "UNKNOWN_ERROR"])
    def test_api_error_status_raises(self, service: GeocodingService, status: str) -> None:
        with pytest.raises(GeocodeUnavailableError):
            service._parse_google_response({"status": status, "results": []})


# ---------------------------------------------------------------------------
# HTTP behaviour
# ---------------------------------------------------------------------------


class TestGeocode:
    @pytest.mark.asyncio
    async def test_sends_address_and_key(self, service: GeocodingService) -> None:
        client = _mock_client(_make_mock_response(_google_ok_response()))

        with patch(PATCH_TARGET, return_value=client) as client_cls:
            result = await service.geocode("100 Market St, San Francisco")

        assert result is not None
        client_cls.assert_called_once_with(timeout=2.5)
        client.get.assert_called_once_with(
            GOOGLE_GEOCODE_URL,
            params={"address": "100 Market St, San Francisco", "key": FAKE_API_KEY},
        )

    @pytest.mark.asyncio
    async def test_second_call_uses_cache(self, service: GeocodingService) -> None:
        client = _mock_client(_make_mock_response(_google_ok_response()))

        with patch(PATCH_TARGET, return_value=client):
            first = await service.geocode("100 Market St, San Francisco")
            second = await service.geocode("  100 market st,   san francisco ")

        assert first == second
        assert client.get.call_count == 1

    @pytest.mark.asyncio
    async def test_no_match_is_not_cached(self, service: GeocodingService) -> None:
        client = _mock_client(_make_mock_response({"status": "ZERO_RESULTS", "results": []}))

        with patch(PATCH_TARGET, return_value=client):
            assert await service.geocode("Nowhere") is None
            assert await service.geocode("Nowhere") is None

        assert client.get.call_count == 2

    @pytest.mark.asyncio
    async def test_timeout_raises_timeout_error(self, service: GeocodingService) -> None:
        client = _mock_client(side_effect=httpx.ReadTimeout("timed out"))

        with patch(PATCH_TARGET, return_value=client):
            with pytest.raises(GeocodeTimeoutError):
                await service.geocode("100 Market St, San Francisco")

    @pytest.mark.asyncio
    async def test_connection_error_raises_unavailable(self, service: GeocodingService) -> None:
        client = _mock_client(side_effect=httpx.ConnectError("connection refused"))

        with patch(PATCH_TARGET, return_value=client):
            with pytest.raises(GeocodeUnavailableError) as exc_info:
                await service.geocode("100 Market St, San Francisco")

        assert not isinstance(exc_info.value, GeocodeTimeoutError)

    @pytest.mark.asyncio
    async def test_http_error_raises_unavailable(self, service: GeocodingService) -> None:
        client = _mock_client(_make_mock_response({}, status_code=500))

        with patch(PATCH_TARGET, return_value=client):
            with pytest.raises(GeocodeUnavailableError):
                await service.geocode("100 Market St, San Francisco")

    @pytest.mark.asyncio
    async def test_request_denied_raises_unavailable(self, service: GeocodingService) -> None:
        data = {"status": "REQUEST_DENIED", "error_message": "API key invalid"}
        client = _mock_client(_make_mock_response(data))

        with patch(PATCH_TARGET, return_value=client):
            with pytest.raises(GeocodeUnavailableError):
                await service.geocode("100 Market St, San Francisco")


# ---------------------------------------------------------------------------
# Cache eviction (LRU)
# ---------------------------------------------------------------------------


class TestCacheEviction:
    def test_lru_eviction_when_exceeding_max_size(self) -> None:
        svc = GeocodingService(api_key=FAKE_API_KEY)
        for i in range(_MAX_CACHE_SIZE):
            svc._cache_put(f"key-{i}", GeoResult(lat=float(i), lng=float(i), formatted_address="a"))

        svc._cache_get("key-0")  # touch: key-1 is now the oldest
        svc._cache_put("overflow-key", GeoResult(lat=0.0, lng=0.0, formatted_address="a"))

        assert len(svc._cache) == _MAX_CACHE_SIZE
        assert "key-0" in svc._cache
        assert "key-1" not in svc._cache
        assert "overflow-key" in svc._cache
