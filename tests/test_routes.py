"""HTTP surface tests through httpx ASGITransport.

The lifespan does not run under ASGITransport; the ``api_client`` fixture
installs the per-test services on ``app.state`` instead.
"""

from datetime import timedelta

import pytest

from conftest import OWNER_ID, RESERVER_ID, SPOT_LAT, SPOT_LNG
from spot_handoff.app.dependencies import http_status_for
from spot_handoff.app.routes.ws import event_message, resync
from spot_handoff.domain.enums import SpotErrorCode
from spot_handoff.domain.schemas import SpotPredicate
from spot_handoff.services.geocoding_service import GeocodeTimeoutError, GeocodeUnavailableError


def _create_body(clock, lat=SPOT_LAT, lng=SPOT_LNG, failure=None, **draft):
    fields = {
        "address": "100 Market St",
        "city": "San Francisco",
        "price": 6.5,
        "category": "street",
        "available_at": (clock() + timedelta(minutes=30)).isoformat(),
        "duration": 30,
    }
    fields.update(draft)
    location = {"failure": failure} if failure else {"fix": {"lat": lat, "lng": lng, "accuracy_m": 8}}
    return {"draft": fields, "location": location}


class TestHealthAndAuth:
    async def test_health(self, api_client):
        resp = await api_client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_me(self, api_client, auth_headers):
        resp = await api_client.get("/api/auth/me", headers=auth_headers("someone"))
        assert resp.json() == {"user_id": "someone"}

    async def test_missing_token(self, api_client, make_spot):
        spot = await make_spot()
        resp = await api_client.post(f"/api/spots/{spot.id}/reserve")
        assert resp.status_code == 401

    async def test_garbage_token(self, api_client):
        resp = await api_client.get("/api/spots/mine", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401


class TestCreateSpot:
    async def test_post_spot(self, api_client, auth_headers, clock):
        resp = await api_client.post("/api/spots", json=_create_body(clock), headers=auth_headers())

        assert resp.status_code == 201
        body = resp.json()
        assert body["spot"]["status"] == "available"
        assert body["spot"]["owner_id"] == OWNER_ID
        assert body["spot"]["price"] == 6.5
        assert body["verification"]["verified"] is True

    async def test_too_far_from_address(self, api_client, auth_headers, clock, services):
        resp = await api_client.post(
            "/api/spots", json=_create_body(clock, lat=SPOT_LAT + 0.01), headers=auth_headers(),
        )

        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "location_not_verified"
        assert await services.store.list_spots() == []

    async def test_price_out_of_range(self, api_client, auth_headers, clock):
        resp = await api_client.post("/api/spots", json=_create_body(clock, price=20.01), headers=auth_headers())

        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "invalid_price"

    async def test_gps_permission_denied(self, api_client, auth_headers, clock):
        resp = await api_client.post(
            "/api/spots", json=_create_body(clock, failure="permission_denied"), headers=auth_headers(),
        )

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "permission_denied"

    @pytest.mark.parametrize(
        "error,status_code,code",
        [
            (GeocodeUnavailableError("down"), 503, "geocode_unavailable"),
            (GeocodeTimeoutError("slow"), 504, "timeout"),
        ],
    )
    async def test_geocoder_failures(self, api_client, auth_headers, clock, fake_geocoder, error, status_code, code):
        fake_geocoder.error = error

        resp = await api_client.post("/api/spots", json=_create_body(clock), headers=auth_headers())

        assert resp.status_code == status_code
        assert resp.json()["detail"]["code"] == code

    async def test_malformed_body(self, api_client, auth_headers):
        resp = await api_client.post("/api/spots", json={"draft": {}}, headers=auth_headers())
        assert resp.status_code == 422


class TestVerifyLocation:
    async def test_verified(self, api_client, auth_headers):
        body = {"address": "100 Market St", "city": "San Francisco", "location": {"fix": {"lat": SPOT_LAT, "lng": SPOT_LNG}}}
        resp = await api_client.post("/api/location/verify", json=body, headers=auth_headers())

        assert resp.status_code == 200
        assert resp.json()["verified"] is True
        assert resp.json()["distance_meters"] == pytest.approx(0.0)

    async def test_mismatch_is_an_answer(self, api_client, auth_headers):
        body = {
            "address": "100 Market St",
            "city": "San Francisco",
            "location": {"fix": {"lat": SPOT_LAT + 0.002, "lng": SPOT_LNG}},
        }
        resp = await api_client.post("/api/location/verify", json=body, headers=auth_headers())

        assert resp.status_code == 200
        data = resp.json()
        assert data["verified"] is False
        assert data["error"] == "location_not_verified"
        assert data["distance_meters"] > 61.0

    async def test_address_not_found(self, api_client, auth_headers, fake_geocoder):
        fake_geocoder.result = None
        body = {"address": "1 Nowhere", "city": "Atlantis", "location": {"fix": {"lat": 0, "lng": 0}}}

        resp = await api_client.post("/api/location/verify", json=body, headers=auth_headers())

        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "address_not_found"


class TestBrowse:
    async def test_list_and_filters(self, api_client, make_spot):
        await make_spot(price=4.0)
        await make_spot(price=9.0, category="garage")
        await make_spot(price=3.0, city="Oakland")

        all_spots = (await api_client.get("/api/spots")).json()
        assert len(all_spots) == 3

        cheap = (await api_client.get("/api/spots", params={"max_price": 5})).json()
        assert {s["price"] for s in cheap} == {3.0, 4.0}

        garages = (await api_client.get("/api/spots", params={"category": "garage"})).json()
        assert [s["category"] for s in garages] == ["garage"]

        oakland = (await api_client.get("/api/spots", params={"city": "oak"})).json()
        assert [s["city"] for s in oakland] == ["Oakland"]

    async def test_nearby_default_radius(self, api_client, make_spot):
        near = await make_spot(lat=SPOT_LAT + 0.003)  # ~330 m
        await make_spot(lat=SPOT_LAT + 0.01)  # ~1.1 km

        rows = (await api_client.get("/api/spots/nearby", params={"lat": SPOT_LAT, "lng": SPOT_LNG})).json()

        assert [r["spot"]["id"] for r in rows] == [near.id]

        wide = (await api_client.get(
            "/api/spots/nearby", params={"lat": SPOT_LAT, "lng": SPOT_LNG, "radius_miles": 1},
        )).json()
        assert len(wide) == 2

    async def test_get_spot(self, api_client, make_spot):
        spot = await make_spot()

        resp = await api_client.get(f"/api/spots/{spot.id}")
        assert resp.status_code == 200
        assert resp.json()["id"] == spot.id

        missing = await api_client.get("/api/spots/does-not-exist")
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "not_found"

    async def test_mine_and_stats(self, api_client, auth_headers, make_spot, services):
        spot = await make_spot()
        await make_spot()
        await services.coordinator.reserve(spot.id, RESERVER_ID)

        mine = (await api_client.get("/api/spots/mine", headers=auth_headers(OWNER_ID))).json()
        assert len(mine["posted"]) == 2

        theirs = (await api_client.get("/api/spots/mine", headers=auth_headers(RESERVER_ID))).json()
        assert [s["id"] for s in theirs["reserved"]] == [spot.id]

        stats = (await api_client.get("/api/spots/mine/stats", headers=auth_headers(OWNER_ID))).json()
        assert stats == {"total_posted": 2, "currently_reserved": 1, "completed_handoffs": 0}


class TestTransitions:
    async def test_reserve_then_complete(self, api_client, auth_headers, make_spot):
        spot = await make_spot()

        reserved = await api_client.post(f"/api/spots/{spot.id}/reserve", headers=auth_headers(RESERVER_ID))
        assert reserved.status_code == 200
        assert reserved.json()["reserved_by"] == RESERVER_ID

        completed = await api_client.post(f"/api/spots/{spot.id}/complete", headers=auth_headers(OWNER_ID))
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"
        assert completed.json()["handoff_count"] == 1

    async def test_reserve_errors(self, api_client, auth_headers, make_spot, clock):
        spot = await make_spot()

        own = await api_client.post(f"/api/spots/{spot.id}/reserve", headers=auth_headers(OWNER_ID))
        assert own.status_code == 403
        assert own.json()["detail"]["code"] == "cannot_reserve_own_spot"

        await api_client.post(f"/api/spots/{spot.id}/reserve", headers=auth_headers(RESERVER_ID))
        second = await api_client.post(f"/api/spots/{spot.id}/reserve", headers=auth_headers("driver-2"))
        assert second.status_code == 409
        assert second.json()["detail"]["code"] == "conflict"

        missing = await api_client.post("/api/spots/nope/reserve", headers=auth_headers(RESERVER_ID))
        assert missing.status_code == 404

    async def test_reserve_expired(self, api_client, auth_headers, make_spot, clock):
        spot = await make_spot()
        clock.advance(hours=1)

        resp = await api_client.post(f"/api/spots/{spot.id}/reserve", headers=auth_headers(RESERVER_ID))

        assert resp.status_code == 410
        assert resp.json()["detail"]["code"] == "spot_expired"

    async def test_owner_only_actions(self, api_client, auth_headers, make_spot):
        spot = await make_spot()

        resp = await api_client.post(f"/api/spots/{spot.id}/cancel", headers=auth_headers(RESERVER_ID))
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "not_owner"

    async def test_cancel_reserved_is_invalid_transition(self, api_client, auth_headers, make_spot):
        spot = await make_spot()
        await api_client.post(f"/api/spots/{spot.id}/reserve", headers=auth_headers(RESERVER_ID))

        resp = await api_client.post(f"/api/spots/{spot.id}/cancel", headers=auth_headers(OWNER_ID))

        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "invalid_transition"


class TestErrorMapping:
    @pytest.mark.parametrize(
        "code,status_code",
        [
            ("invalid_address", 422),
            ("invalid_price", 422),
            ("invalid_timing", 422),
            ("location_not_verified", 422),
            ("not_owner", 403),
            ("cannot_reserve_own_spot", 403),
            ("conflict", 409),
            ("invalid_transition", 409),
            ("spot_expired", 410),
            ("not_found", 404),
            ("address_not_found", 422),
            ("geocode_unavailable", 503),
            ("timeout", 504),
            ("permission_denied", 400),
            ("position_unavailable", 400),
        ],
    )
    def test_every_code_has_a_status(self, code, status_code):
        assert http_status_for(SpotErrorCode(code)) == status_code


class TestFeedMessages:
    async def test_event_message_shape(self, services, make_spot):
        spot = await make_spot()
        async with services.feed.subscribe(SpotPredicate(status="available")) as sub:
            assert await resync(sub, services) == 1
            msg = event_message(sub.drain()[0])

        assert msg["type"] == "add"
        assert msg["spot"]["id"] == spot.id
        assert msg["spot"]["status"] == "available"
        assert msg["timestamp"].endswith("+00:00")
