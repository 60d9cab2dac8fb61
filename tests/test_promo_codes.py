"""
tests/test_promo_codes.py
Promo administration, eligibility rules, and discounts at checkout.
"""

import pytest
from httpx import AsyncClient

from shared.models.models import Route, User
from tests.conftest import auth_headers, future


async def _create(client: AsyncClient, admin_user: User, **overrides) -> dict:
    payload = {
        "code": " ride10 ",
        "description": "10% off",
        "discount_type": "percentage",
        "discount_value": 10,
        **overrides,
    }
    response = await client.post("/promo-codes", headers=auth_headers(admin_user), json=payload)
    assert response.status_code == 201, response.json()
    return response.json()["data"]


async def _validate(client: AsyncClient, user: User, code: str, amount: float, route_id=None):
    body = {"code": code, "amount": amount}
    if route_id:
        body["route_id"] = str(route_id)
    return await client.post("/promo-codes/validate", headers=auth_headers(user), json=body)


@pytest.mark.asyncio
async def test_create_normalizes_code(client: AsyncClient, admin_user: User):
    promo = await _create(client, admin_user)
    assert promo["code"] == "RIDE10"
    assert promo["times_used"] == 0
    assert promo["applicable_to"] == "all_routes"


@pytest.mark.asyncio
async def test_create_rules(client: AsyncClient, user: User, admin_user: User):
    await _create(client, admin_user)

    duplicate = await client.post(
        "/promo-codes",
        headers=auth_headers(admin_user),
        json={"code": "RIDE10", "discount_type": "fixed_amount", "discount_value": 5},
    )
    assert duplicate.status_code == 409

    too_big = await client.post(
        "/promo-codes",
        headers=auth_headers(admin_user),
        json={"code": "HALFPLUS", "discount_type": "percentage", "discount_value": 150},
    )
    assert too_big.status_code == 400

    inverted = await client.post(
        "/promo-codes",
        headers=auth_headers(admin_user),
        json={
            "code": "WINDOW",
            "discount_type": "fixed_amount",
            "discount_value": 5,
            "valid_from": future(48),
            "valid_until": future(24),
        },
    )
    assert inverted.status_code == 400

    forbidden = await client.post(
        "/promo-codes",
        headers=auth_headers(user),
        json={"code": "MINE", "discount_type": "fixed_amount", "discount_value": 5},
    )
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_validate_percentage_with_cap(client: AsyncClient, user: User, admin_user: User):
    await _create(client, admin_user, code="BIG50", discount_value=50, max_discount_amount=15)

    response = await _validate(client, user, "big50", 100)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["discount_amount"] == 15.0
    assert data["final_amount"] == 85.0


@pytest.mark.asyncio
async def test_fixed_discount_never_exceeds_amount(client: AsyncClient, user: User, admin_user: User):
    await _create(client, admin_user, code="FLAT25", discount_type="fixed_amount", discount_value=25)
    response = await _validate(client, user, "FLAT25", 20)
    assert response.json()["data"]["discount_amount"] == 20.0
    assert response.json()["data"]["final_amount"] == 0.0


@pytest.mark.asyncio
async def test_validation_failures_name_the_rule(client: AsyncClient, user: User, admin_user: User, route: Route):
    await _create(client, admin_user, code="MIN50", min_booking_amount=50)
    await _create(client, admin_user, code="EXPIRED", valid_until=future(-1), valid_from=future(-48))
    await _create(client, admin_user, code="LATER", valid_from=future(24))
    await _create(client, admin_user, code="OFF", is_active=False)
    await _create(client, admin_user, code="ROUTEONLY", applicable_to="specific_routes", route_ids=[str(route.id)])

    cases = {
        "NOPE": "Invalid promo code",
        "MIN50": "Minimum booking amount for this promo code is 50.00",
        "EXPIRED": "Promo code has expired",
        "LATER": "Promo code is not valid yet",
        "OFF": "Promo code is not active",
        "ROUTEONLY": "Promo code is not valid for this route",
    }
    for code, message in cases.items():
        response = await _validate(client, user, code, 20)
        assert response.status_code == 400, code
        assert response.json()["message"] == message

    on_route = await _validate(client, user, "ROUTEONLY", 20, route_id=route.id)
    assert on_route.status_code == 200


@pytest.mark.asyncio
async def test_specific_users(client: AsyncClient, user: User, other_user: User, admin_user: User):
    await _create(client, admin_user, code="VIP", applicable_to="specific_users", user_ids=[str(user.id)])

    assert (await _validate(client, user, "VIP", 20)).status_code == 200
    denied = await _validate(client, other_user, "VIP", 20)
    assert denied.json()["message"] == "Promo code is not valid for this account"

    # Targeted codes are not advertised
    active = await client.get("/promo-codes/active")
    assert active.json()["data"] == []


@pytest.mark.asyncio
async def test_booking_applies_discount_and_counts_use(
    client: AsyncClient, user: User, admin_user: User, route: Route
):
    promo = await _create(client, admin_user, max_uses=1)

    booking = await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={
            "route_id": str(route.id),
            "scheduled_at": future(72),
            "passengers": [{"name": "Riya"}],
            "promo_code": "ride10",
            "payment": {"method": "card", "token": "tok_visa"},
        },
    )
    assert booking.status_code == 201
    data = booking.json()["data"]
    assert data["promo_code"] == "RIDE10"
    assert data["base_amount"] == 20.0
    assert data["discount_amount"] == 2.0
    assert data["total_amount"] == 18.0

    fetched = await client.get(f"/promo-codes/{promo['id']}", headers=auth_headers(admin_user))
    assert fetched.json()["data"]["times_used"] == 1

    exhausted = await _validate(client, user, "RIDE10", 20)
    assert exhausted.json()["message"] == "Promo code usage limit reached"


@pytest.mark.asyncio
async def test_per_user_limit(client: AsyncClient, user: User, admin_user: User, route: Route):
    await _create(client, admin_user, code="ONCE", max_uses_per_user=1)
    await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={
            "route_id": str(route.id),
            "scheduled_at": future(72),
            "passengers": [{"name": "Riya"}],
            "promo_code": "ONCE",
        },
    )
    response = await _validate(client, user, "ONCE", 20)
    assert response.status_code == 400
    assert "maximum number of times" in response.json()["message"]


@pytest.mark.asyncio
async def test_pricing_quote_with_promo(client: AsyncClient, admin_user: User, route: Route):
    await _create(client, admin_user, code="FIVE", discount_type="fixed_amount", discount_value=5)
    response = await client.get(f"/routes/{route.id}/pricing", params={"promo_code": "five", "passengers": 2})
    data = response.json()["data"]
    assert data["subtotal"] == 40.0
    assert data["discount"] == 5.0
    assert data["total"] == 35.0
    assert data["promo_code"] == "FIVE"


@pytest.mark.asyncio
async def test_delete_used_code_deactivates(client: AsyncClient, user: User, admin_user: User, route: Route):
    promo = await _create(client, admin_user)
    unused = await _create(client, admin_user, code="SPARE")

    await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={
            "route_id": str(route.id),
            "scheduled_at": future(72),
            "passengers": [{"name": "Riya"}],
            "promo_code": "RIDE10",
            "payment": {"method": "card", "token": "tok_visa"},
        },
    )
    admin = auth_headers(admin_user)

    used = await client.delete(f"/promo-codes/{promo['id']}", headers=admin)
    assert used.json()["message"] == "Promo code deactivated"
    assert (await client.get(f"/promo-codes/{promo['id']}", headers=admin)).json()["data"]["is_active"] is False

    spare = await client.delete(f"/promo-codes/{unused['id']}", headers=admin)
    assert spare.json()["message"] == "Promo code deleted"
    assert (await client.get(f"/promo-codes/{unused['id']}", headers=admin)).status_code == 404


@pytest.mark.asyncio
async def test_passenger_edit_recomputes_discount(
    client: AsyncClient, user: User, admin_user: User, route: Route
):
    await _create(client, admin_user)
    created = await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={
            "route_id": str(route.id),
            "scheduled_at": future(72),
            "passengers": [{"name": "Riya"}],
            "promo_code": "RIDE10",
        },
    )
    assert created.json()["data"]["total_amount"] == 18.0

    response = await client.put(
        f"/bookings/{created.json()['data']['id']}",
        headers=auth_headers(user),
        json={"passengers": [{"name": "A"}, {"name": "B"}, {"name": "C"}]},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["base_amount"] == 60.0
    assert data["discount_amount"] == 6.0
    assert data["total_amount"] == 54.0


@pytest.mark.asyncio
async def test_passenger_edit_below_promo_minimum_rejected(
    client: AsyncClient, user: User, admin_user: User, route: Route
):
    await _create(
        client, admin_user, code="GROUP5", discount_type="fixed_amount", discount_value=5, min_booking_amount=30,
    )
    created = await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={
            "route_id": str(route.id),
            "scheduled_at": future(72),
            "passengers": [{"name": "A"}, {"name": "B"}],
            "promo_code": "GROUP5",
        },
    )
    booking_id = created.json()["data"]["id"]
    assert created.json()["data"]["total_amount"] == 35.0

    response = await client.put(
        f"/bookings/{booking_id}", headers=auth_headers(user), json={"passengers": [{"name": "A"}]}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Minimum booking amount for this promo code is 30.00"

    unchanged = await client.get(f"/bookings/{booking_id}", headers=auth_headers(user))
    assert unchanged.json()["data"]["passenger_count"] == 2
    assert unchanged.json()["data"]["total_amount"] == 35.0
