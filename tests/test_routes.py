"""
tests/test_routes.py
Route CRUD, search, schedule availability and price quotes.
"""

from datetime import datetime

import pytest
from httpx import AsyncClient

from shared.models.models import Route, User
from tests.conftest import auth_headers, future


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _route_payload(hotpoints, **overrides) -> dict:
    origin, destination = hotpoints
    payload = {
        "name": "Commuter Shuttle",
        "code": "CS1",
        "origin_id": str(origin.id),
        "destination_id": str(destination.id),
        "distance_m": 6000,
        "duration_s": 900,
        "base_price": 5,
        "price_per_km": 1,
        "price_per_minute": 0.2,
        "schedule_type": "scheduled",
        # Monday to Friday
        "schedule": {"days": [0, 1, 2, 3, 4], "departure_times": ["17:30", "08:00"]},
        "seat_capacity": 12,
    }
    payload.update(overrides)
    return payload


# ── Public reads ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_routes(client: AsyncClient, route: Route):
    response = await client.get("/routes")
    assert response.status_code == 200
    assert [r["code"] for r in response.json()["data"]] == ["DTX"]


@pytest.mark.asyncio
async def test_pricing_quote(client: AsyncClient, route: Route):
    response = await client.get(f"/routes/{route.id}/pricing")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["base_fare"] == 20.0
    assert data["subtotal"] == 20.0
    assert data["total"] == 20.0
    assert data["discount"] == 0.0
    assert data["currency"] == "USD"

    group = await client.get(f"/routes/{route.id}/pricing", params={"passengers": 3})
    assert group.json()["data"]["total"] == 60.0


@pytest.mark.asyncio
async def test_pricing_applies_first_peak_window(client: AsyncClient, admin_user: User, route: Route):
    await client.put(
        f"/routes/{route.id}",
        headers=auth_headers(admin_user),
        json={
            "dynamic_pricing_enabled": True,
            "peak_hours": [
                {"start": "07:00", "end": "10:00", "multiplier": 1.5},
                {"start": "08:00", "end": "09:00", "multiplier": 2},
            ],
        },
    )
    response = await client.get(
        f"/routes/{route.id}/pricing", params={"date": "2024-01-01T08:30:00+00:00"}
    )
    data = response.json()["data"]
    assert data["peak_multiplier"] == 1.5
    assert data["total"] == 30.0

    off_peak = await client.get(
        f"/routes/{route.id}/pricing", params={"date": "2024-01-01T12:00:00+00:00"}
    )
    assert off_peak.json()["data"]["total"] == 20.0

    # 10:30 at +02:00 falls in the 07:00-10:00 UTC window
    offset = await client.get(
        f"/routes/{route.id}/pricing", params={"date": "2024-01-01T10:30:00+02:00"}
    )
    assert offset.json()["data"]["peak_multiplier"] == 1.5


@pytest.mark.asyncio
async def test_search_by_hotpoints(client: AsyncClient, hotpoints, route: Route):
    origin, destination = hotpoints
    response = await client.get(
        "/routes/search", params={"origin": str(origin.id), "destination": str(destination.id)}
    )
    assert [r["id"] for r in response.json()["data"]] == [str(route.id)]

    reverse = await client.get(
        "/routes/search", params={"origin": str(destination.id), "destination": str(origin.id)}
    )
    assert reverse.json()["data"] == []


@pytest.mark.asyncio
async def test_search_filters_by_weekday(client: AsyncClient, admin_user: User, hotpoints):
    origin, destination = hotpoints
    await client.post("/routes", headers=auth_headers(admin_user), json=_route_payload(hotpoints))

    params = {"origin": str(origin.id), "destination": str(destination.id)}
    monday = await client.get("/routes/search", params={**params, "date": "2024-01-01"})
    assert len(monday.json()["data"]) == 1

    saturday = await client.get("/routes/search", params={**params, "date": "2024-01-06"})
    assert saturday.json()["data"] == []


# ── Availability ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unscheduled_route_always_available(client: AsyncClient, route: Route):
    response = await client.get(
        f"/routes/{route.id}/availability", params={"date_time": "2024-01-06T03:00:00+00:00"}
    )
    data = response.json()["data"]
    assert data["is_available"] is True
    assert data["reason"] is None


@pytest.mark.asyncio
async def test_scheduled_route_availability(client: AsyncClient, admin_user: User, hotpoints):
    created = await client.post("/routes", headers=auth_headers(admin_user), json=_route_payload(hotpoints))
    route = created.json()["data"]
    assert route["schedule"]["departure_times"] == ["08:00", "17:30"]

    on_time = await client.get(
        f"/routes/{route['id']}/availability", params={"date_time": "2024-01-01T08:00:00+00:00"}
    )
    assert on_time.json()["data"]["is_available"] is True

    between = await client.get(
        f"/routes/{route['id']}/availability", params={"date_time": "2024-01-01T09:00:00+00:00"}
    )
    data = between.json()["data"]
    assert data["is_available"] is False
    assert data["reason"] == "No departure at the requested time"
    assert _parse(data["next_departure"]) == _parse("2024-01-01T17:30:00+00:00")

    # Friday evening rolls over to Monday morning
    weekend = await client.get(
        f"/routes/{route['id']}/availability", params={"date_time": "2024-01-05T18:00:00+00:00"}
    )
    assert _parse(weekend.json()["data"]["next_departure"]) == _parse("2024-01-08T08:00:00+00:00")


@pytest.mark.asyncio
async def test_availability_reads_offsets_as_utc(client: AsyncClient, admin_user: User, hotpoints):
    created = await client.post("/routes", headers=auth_headers(admin_user), json=_route_payload(hotpoints))
    route = created.json()["data"]

    # 10:00 at +02:00 is the 08:00 UTC departure
    shifted = await client.get(
        f"/routes/{route['id']}/availability", params={"date_time": "2024-01-01T10:00:00+02:00"}
    )
    data = shifted.json()["data"]
    assert data["is_available"] is True
    assert _parse(data["requested_at"]) == _parse("2024-01-01T08:00:00+00:00")

    # 08:00 at +02:00 is 06:00 UTC, before the first departure
    early = await client.get(
        f"/routes/{route['id']}/availability", params={"date_time": "2024-01-01T08:00:00+02:00"}
    )
    assert early.json()["data"]["is_available"] is False
    assert _parse(early.json()["data"]["next_departure"]) == _parse("2024-01-01T08:00:00+00:00")


# ── Admin writes ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_requires_admin(client: AsyncClient, user: User, hotpoints):
    response = await client.post("/routes", headers=auth_headers(user), json=_route_payload(hotpoints))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_rejects_same_origin_and_destination(client: AsyncClient, admin_user: User, hotpoints):
    origin, _ = hotpoints
    response = await client.post(
        "/routes",
        headers=auth_headers(admin_user),
        json=_route_payload(hotpoints, destination_id=str(origin.id)),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_rejects_bad_departure_time(client: AsyncClient, admin_user: User, hotpoints):
    response = await client.post(
        "/routes",
        headers=auth_headers(admin_user),
        json=_route_payload(hotpoints, schedule={"departure_times": ["25:00"]}),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_duplicate_code_conflict(client: AsyncClient, admin_user: User, hotpoints, route: Route):
    response = await client.post(
        "/routes", headers=auth_headers(admin_user), json=_route_payload(hotpoints, code="DTX")
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_inactive_route_hidden_and_unpriced(client: AsyncClient, admin_user: User, route: Route):
    await client.put(f"/routes/{route.id}", headers=auth_headers(admin_user), json={"status": "inactive"})

    assert (await client.get(f"/routes/{route.id}")).status_code == 404
    assert (await client.get(f"/routes/{route.id}", headers=auth_headers(admin_user))).status_code == 200
    assert (await client.get(f"/routes/{route.id}/pricing")).status_code == 404


@pytest.mark.asyncio
async def test_delete_blocked_by_upcoming_booking(
    client: AsyncClient, user: User, admin_user: User, route: Route
):
    await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={"route_id": str(route.id), "scheduled_at": future(48), "passengers": [{"name": "Riya"}]},
    )
    blocked = await client.delete(f"/routes/{route.id}", headers=auth_headers(admin_user))
    assert blocked.status_code == 400


@pytest.mark.asyncio
async def test_delete_route(client: AsyncClient, admin_user: User, route: Route):
    response = await client.delete(f"/routes/{route.id}", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert (await client.get(f"/routes/{route.id}", headers=auth_headers(admin_user))).status_code == 404
