"""Geocoding service wrapping the Google Maps Geocoding API.

Forward geocoding only, with an in-memory LRU cache of successful lookups
and async HTTP via httpx. Each lookup is a single bounded-timeout request;
retrying is the caller's decision.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

_MAX_CACHE_SIZE = 10_000


class GeocodeUnavailableError(Exception):
    """The geocoder could not answer (network, HTTP or API-status failure)."""


class GeocodeTimeoutError(GeocodeUnavailableError):
    """The geocoder did not answer within the configured timeout."""


@dataclass(frozen=True)
class GeoResult:
    lat: float
    lng: float
    formatted_address: str
    city: str = ""
    location_type: str = ""


class Geocoder(Protocol):
    """Anything that resolves an address query to a single best match."""

    async def geocode(self, query: str) -> GeoResult | None: ...


class GeocodingService:
    """Async geocoding backed by the Google Maps Geocoding API.

    ``geocode`` returns ``None`` when the address has no match and raises
    ``GeocodeUnavailableError`` / ``GeocodeTimeoutError`` when the lookup
    itself failed, so callers can tell a bad address from a bad network.
    """

    def __init__(self, api_key: str, timeout: float = 10.0) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._cache: OrderedDict[str, GeoResult] = OrderedDict()

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _normalize_key(self, raw: str) -> str:
        return " ".join(raw.split()).lower()

    def _cache_get(self, key: str) -> GeoResult | None:
        """Return the cached value, moving it to the end on hit (LRU)."""
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]
        return None

    def _cache_put(self, key: str, value: GeoResult) -> None:
        if key in self._cache:
            self._cache.move_to_end(key)
            self._cache[key] = value
        else:
            self._cache[key] = value
            if len(self._cache) > _MAX_CACHE_SIZE:
                self._cache.popitem(last=False)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def geocode(self, query: str) -> GeoResult | None:
        """Forward-geocode *query* into a `GeoResult`."""
        cache_key = self._normalize_key(query)
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        params = {
            "address": query,
            "key": self._api_key,
        }

        data = await self._fetch(params)
        result = self._parse_google_response(data)
        if result is not None:
            self._cache_put(cache_key, result)
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch(self, params: dict) -> dict:
        """Execute the HTTP request to Google and return the JSON body."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(GOOGLE_GEOCODE_URL, params=params)
                resp.raise_for_status()
                return resp.json()
        except httpx.TimeoutException as exc:
            logger.warning("Google Geocoding API timed out after %.1fs: %s", self._timeout, exc)
            raise GeocodeTimeoutError(str(exc)) from exc
        except httpx.HTTPStatusError as exc:
            logger.warning("Google Geocoding API HTTP error: %s", exc)
            raise GeocodeUnavailableError(str(exc)) from exc
        except httpx.RequestError as exc:
            logger.warning("Google Geocoding API request failed: %s", exc)
            raise GeocodeUnavailableError(str(exc)) from exc
        except ValueError as exc:
            logger.warning("Google Geocoding API returned invalid JSON: %s", exc)
            raise GeocodeUnavailableError(str(exc)) from exc

    def _parse_google_response(self, data: dict) -> GeoResult | None:
        """Extract the best match from the Google Geocoding JSON response."""
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            logger.warning("Google Geocoding API returned status: %s", status)
            raise GeocodeUnavailableError(f"Geocoder status {status}")

        results = data.get("results")
        if not results:
            return None

        top = results[0]

        geometry = top.get("geometry", {})
        location = geometry.get("location", {})
        lat = location.get("lat")
        lng = location.get("lng")
        if lat is None or lng is None:
            logger.warning("Missing lat/lng in geocoding response")
            return None

        city = ""
        for comp in top.get("address_components", []):
            types = comp.get("types", [])
            if "locality" in types and not city:
                city = comp.get("long_name", "")
            elif "sublocality" in types and not city:
                city = comp.get("long_name", "")

        return GeoResult(
            lat=lat,
            lng=lng,
            formatted_address=top.get("formatted_address", ""),
            city=city,
            location_type=geometry.get("location_type", ""),
        )


def build_geocoder() -> GeocodingService:
    """Geocoder configured from settings."""
    from spot_handoff.app.config import get_settings

    settings = get_settings()
    return GeocodingService(settings.google_maps_api_key, timeout=settings.geocode_timeout_seconds)
