"""
tests/test_payments.py
Mock gateway charges, declines, idempotent payment requests, and admin refunds.
"""

import pytest
from httpx import AsyncClient

from shared.models.models import Route, User
from tests.conftest import auth_headers, future


async def _pending_booking(client: AsyncClient, user: User, route: Route) -> dict:
    response = await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={
            "route_id": str(route.id),
            "scheduled_at": future(96),
            "passengers": [{"name": "Riya Rider"}],
        },
    )
    assert response.status_code == 201
    return response.json()["data"]


async def _pay(client: AsyncClient, user: User, booking_id: str, token: str = "tok_visa", headers=None):
    return await client.post(
        "/payments",
        headers={**auth_headers(user), **(headers or {})},
        json={"booking_id": booking_id, "method": "card", "token": token},
    )


@pytest.mark.asyncio
async def test_pay_pending_booking_confirms_it(client: AsyncClient, user: User, route: Route):
    booking = await _pending_booking(client, user, route)

    response = await _pay(client, user, booking["id"])
    assert response.status_code == 201
    payment = response.json()["data"]
    assert payment["status"] == "succeeded"
    assert payment["amount"] == 20.0
    assert payment["transaction_id"].startswith("MOCK_TRANS_")
    assert payment["trip_id"] is not None

    refreshed = await client.get(f"/bookings/{booking['id']}", headers=auth_headers(user))
    assert refreshed.json()["data"]["status"] == "confirmed"
    assert refreshed.json()["data"]["payment_status"] == "paid"


@pytest.mark.asyncio
async def test_paying_twice_is_rejected(client: AsyncClient, user: User, route: Route):
    booking = await _pending_booking(client, user, route)
    await _pay(client, user, booking["id"])

    response = await _pay(client, user, booking["id"])
    assert response.status_code == 400
    assert response.json()["message"] == "Booking is already paid"


@pytest.mark.asyncio
async def test_declined_then_retry_succeeds(client: AsyncClient, user: User, route: Route):
    booking = await _pending_booking(client, user, route)

    declined = await _pay(client, user, booking["id"], token="tok_insufficient_funds")
    assert declined.status_code == 201
    assert declined.json()["data"]["status"] == "failed"
    assert declined.json()["data"]["failure_reason"] == "Insufficient funds"

    retried = await _pay(client, user, booking["id"])
    assert retried.status_code == 201
    assert retried.json()["data"]["status"] == "succeeded"

    listed = await client.get("/payments", params={"booking_id": booking["id"]}, headers=auth_headers(user))
    assert listed.json()["total"] == 2


@pytest.mark.asyncio
async def test_payment_idempotency_key_replays(client: AsyncClient, user: User, route: Route):
    booking = await _pending_booking(client, user, route)
    headers = {"Idempotency-Key": "pay-once"}

    first = await _pay(client, user, booking["id"], headers=headers)
    second = await _pay(client, user, booking["id"], headers=headers)
    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["data"]["id"] == second.json()["data"]["id"]


@pytest.mark.asyncio
async def test_cannot_pay_for_someone_elses_booking(
    client: AsyncClient, user: User, other_user: User, route: Route
):
    booking = await _pending_booking(client, user, route)
    response = await _pay(client, other_user, booking["id"])
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_open_breaker_returns_503(client: AsyncClient, user: User, route: Route, breaker):
    booking = await _pending_booking(client, user, route)
    for _ in range(breaker.fail_max):
        response = await _pay(client, user, booking["id"], token="tok_gateway_error")
        assert response.status_code == 503

    # Breaker is open now, so even a good card is refused without reaching the gateway
    response = await _pay(client, user, booking["id"])
    assert response.status_code == 503
    assert response.json()["success"] is False


# ── Refunds ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_refund_requires_admin(client: AsyncClient, user: User, route: Route):
    booking = await _pending_booking(client, user, route)
    payment = (await _pay(client, user, booking["id"])).json()["data"]

    response = await client.post(
        f"/payments/{payment['id']}/refund", headers=auth_headers(user), json={"amount": 5}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_refund_above_balance_rejected(client: AsyncClient, user: User, admin_user: User, route: Route):
    booking = await _pending_booking(client, user, route)
    payment = (await _pay(client, user, booking["id"])).json()["data"]

    response = await client.post(
        f"/payments/{payment['id']}/refund", headers=auth_headers(admin_user), json={"amount": 25}
    )
    assert response.status_code == 400
    assert "exceeds the refundable balance" in response.json()["message"]


@pytest.mark.asyncio
async def test_partial_then_full_refund(client: AsyncClient, user: User, admin_user: User, route: Route):
    booking = await _pending_booking(client, user, route)
    payment = (await _pay(client, user, booking["id"])).json()["data"]
    admin = auth_headers(admin_user)

    partial = await client.post(
        f"/payments/{payment['id']}/refund", headers=admin, json={"amount": 5, "reason": "Late pickup"}
    )
    assert partial.status_code == 200
    assert partial.json()["data"]["amount"] == 5.0

    after_partial = (await client.get(f"/payments/{payment['id']}", headers=admin)).json()["data"]
    assert after_partial["status"] == "partially_refunded"
    assert after_partial["amount_refunded"] == 5.0

    rest = await client.post(f"/payments/{payment['id']}/refund", headers=admin, json={})
    assert rest.status_code == 200
    assert rest.json()["data"]["amount"] == 15.0

    after_full = (await client.get(f"/payments/{payment['id']}", headers=admin)).json()["data"]
    assert after_full["status"] == "refunded"

    refunded_booking = (await client.get(f"/bookings/{booking['id']}", headers=admin)).json()["data"]
    assert refunded_booking["status"] == "refunded"
    assert refunded_booking["payment_status"] == "refunded"
    assert refunded_booking["refund_amount"] == 20.0

    refunds = await client.get(f"/payments/{payment['id']}/refunds", headers=auth_headers(user))
    assert [r["amount"] for r in refunds.json()["data"]] == [5.0, 15.0]

    more = await client.post(f"/payments/{payment['id']}/refund", headers=admin, json={"amount": 1})
    assert more.status_code == 400


@pytest.mark.asyncio
async def test_refund_is_audited(client: AsyncClient, user: User, admin_user: User, route: Route):
    booking = await _pending_booking(client, user, route)
    payment = (await _pay(client, user, booking["id"])).json()["data"]

    await client.post(f"/payments/{payment['id']}/refund", headers=auth_headers(admin_user), json={})

    logs = await client.get(
        "/admin/audit-logs", params={"action": "payment.refunded"}, headers=auth_headers(admin_user)
    )
    assert logs.status_code == 200
    assert logs.json()["total"] == 1
    assert logs.json()["data"][0]["entity_id"] == payment["id"]
