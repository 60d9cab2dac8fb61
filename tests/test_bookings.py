"""
tests/test_bookings.py
Booking lifecycle: create (with and without payment) → confirm / fail →
cancel with refund policy, idempotent creation, and the transition table.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import IDEMPOTENCY_PENDING
from shared.models.models import (
    Booking,
    Payment,
    PaymentRefund,
    PaymentStatus,
    RecordStatus,
    Route,
    Trip,
    TripStatus,
    User,
    utcnow,
)
from tests.conftest import auth_headers, future


def _payload(route: Route, **overrides) -> dict:
    payload = {
        "route_id": str(route.id),
        "scheduled_at": future(),
        "passengers": [{"name": "Riya Rider", "age": 30}],
    }
    payload.update(overrides)
    return payload


async def _booking_count(db: AsyncSession) -> int:
    return await db.scalar(select(func.count(Booking.id)))


# ── Creation ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_without_payment_is_pending(client: AsyncClient, user: User, route: Route):
    response = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["status"] == "pending_payment"
    assert data["payment_status"] == "pending"
    assert data["booking_number"].startswith("BK-")
    assert data["total_amount"] == 20.0
    assert data["trip_id"] is None


@pytest.mark.asyncio
async def test_create_booking_with_payment_confirms_and_creates_trip(
    client: AsyncClient, user: User, route: Route, db: AsyncSession
):
    payload = _payload(
        route,
        passengers=[{"name": "Riya"}, {"name": "Sam"}],
        payment={"method": "card", "token": "tok_visa"},
    )
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "confirmed"
    assert data["payment_status"] == "paid"
    assert data["total_amount"] == 40.0
    assert data["trip_id"] is not None

    trip = await db.get(Trip, uuid.UUID(data["trip_id"]))
    assert trip.status.value == "confirmed"
    assert trip.booking_id == uuid.UUID(data["id"])
    assert trip.available_seats == trip.total_seats - 2


@pytest.mark.asyncio
async def test_declined_payment_records_failed_booking(client: AsyncClient, user: User, route: Route):
    payload = _payload(route, payment={"method": "card", "token": "tok_declined"})
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "payment_failed"
    assert data["payment_status"] == "failed"
    assert data["trip_id"] is None


@pytest.mark.asyncio
async def test_gateway_outage_returns_503_and_writes_nothing(
    client: AsyncClient, user: User, route: Route, db: AsyncSession
):
    payload = _payload(route, payment={"method": "card", "token": "tok_gateway_error"})
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 503
    assert response.json()["success"] is False
    assert await _booking_count(db) == 0


@pytest.mark.asyncio
async def test_past_departure_rejected_without_creating_booking(
    client: AsyncClient, user: User, route: Route, db: AsyncSession
):
    response = await client.post(
        "/bookings", headers=auth_headers(user), json=_payload(route, scheduled_at=future(-2))
    )
    assert response.status_code == 400
    assert await _booking_count(db) == 0


@pytest.mark.asyncio
async def test_route_and_trip_together_rejected(client: AsyncClient, user: User, route: Route, trip: Trip):
    response = await client.post(
        "/bookings", headers=auth_headers(user), json=_payload(route, trip_id=str(trip.id))
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_route_or_trip_required(client: AsyncClient, user: User, db: AsyncSession):
    response = await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={"scheduled_at": future(), "passengers": [{"name": "Riya"}]},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Either route_id or trip_id is required"
    assert await _booking_count(db) == 0


@pytest.mark.asyncio
async def test_inactive_route_rejected(client: AsyncClient, user: User, route: Route, db: AsyncSession):
    route.status = RecordStatus.INACTIVE
    await db.commit()

    response = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    assert response.status_code == 400
    assert response.json()["message"] == "Route is not available at the requested time: Route is not active"
    assert await _booking_count(db) == 0


@pytest.mark.asyncio
async def test_off_schedule_departure_rejected(
    client: AsyncClient, user: User, route: Route, db: AsyncSession
):
    route.schedule = {"departure_times": ["08:00"]}
    await db.commit()
    day = (utcnow() + timedelta(days=3)).date()

    response = await client.post(
        "/bookings",
        headers=auth_headers(user),
        json=_payload(route, scheduled_at=f"{day.isoformat()}T09:15:00+00:00"),
    )
    assert response.status_code == 400
    message = response.json()["message"]
    assert message.startswith("Route is not available at the requested time: No departure at the requested time")
    assert "Next departure" in message
    assert await _booking_count(db) == 0


@pytest.mark.asyncio
async def test_offset_departure_matches_utc_schedule(
    client: AsyncClient, user: User, route: Route, db: AsyncSession
):
    route.schedule = {"departure_times": ["08:00"]}
    await db.commit()
    day = (utcnow() + timedelta(days=3)).date()

    # 10:00 at +02:00 is the 08:00 UTC departure
    response = await client.post(
        "/bookings",
        headers=auth_headers(user),
        json=_payload(route, scheduled_at=f"{day.isoformat()}T10:00:00+02:00"),
    )
    assert response.status_code == 201
    scheduled = datetime.fromisoformat(response.json()["data"]["scheduled_at"].replace("Z", "+00:00"))
    assert scheduled == datetime(day.year, day.month, day.day, 8, 0, tzinfo=timezone.utc)
    assert scheduled.utcoffset() == timedelta(0)


@pytest.mark.asyncio
@pytest.mark.parametrize("trip_status", [TripStatus.CANCELLED, TripStatus.COMPLETED, TripStatus.IN_PROGRESS])
async def test_closed_trip_rejected(
    client: AsyncClient, user: User, trip: Trip, db: AsyncSession, trip_status: TripStatus
):
    trip.status = trip_status
    await db.commit()

    response = await client.post(
        "/bookings",
        headers=auth_headers(user),
        json={"trip_id": str(trip.id), "passengers": [{"name": "Riya"}]},
    )
    assert response.status_code == 400
    assert response.json()["message"] == f"Trip is not open for booking (status: {trip_status.value})"
    assert await _booking_count(db) == 0


@pytest.mark.asyncio
async def test_over_capacity_rejected(client: AsyncClient, user: User, route: Route, db: AsyncSession):
    passengers = [{"name": f"P{i}"} for i in range(route.seat_capacity + 1)]
    response = await client.post(
        "/bookings", headers=auth_headers(user), json=_payload(route, passengers=passengers)
    )
    assert response.status_code == 400
    assert "seats" in response.json()["message"]
    assert await _booking_count(db) == 0


@pytest.mark.asyncio
async def test_capacity_counts_existing_bookings(client: AsyncClient, user: User, route: Route):
    scheduled_at = future(48)
    first = _payload(route, scheduled_at=scheduled_at, passengers=[{"name": f"P{i}"} for i in range(3)])
    assert (await client.post("/bookings", headers=auth_headers(user), json=first)).status_code == 201

    second = _payload(route, scheduled_at=scheduled_at, passengers=[{"name": "A"}, {"name": "B"}])
    response = await client.post("/bookings", headers=auth_headers(user), json=second)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_book_existing_trip_takes_seats(client: AsyncClient, user: User, trip: Trip, db: AsyncSession):
    payload = {"trip_id": str(trip.id), "passengers": [{"name": "Riya"}, {"name": "Sam"}]}
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 201
    assert response.json()["data"]["trip_id"] == str(trip.id)

    await db.refresh(trip)
    assert trip.available_seats == trip.total_seats - 2


@pytest.mark.asyncio
async def test_unknown_route_returns_404(client: AsyncClient, user: User, route: Route):
    response = await client.post(
        "/bookings", headers=auth_headers(user), json=_payload(route, route_id=str(uuid.uuid4()))
    )
    assert response.status_code == 404


# ── Idempotency ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_idempotency_key_replays_original_booking(
    client: AsyncClient, user: User, route: Route, db: AsyncSession
):
    headers = {**auth_headers(user), "Idempotency-Key": "booking-key-1"}
    payload = _payload(route)

    first = await client.post("/bookings", headers=headers, json=payload)
    second = await client.post("/bookings", headers=headers, json=payload)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["data"]["id"] == second.json()["data"]["id"]
    assert await _booking_count(db) == 1


@pytest.mark.asyncio
async def test_idempotency_key_in_flight_returns_409(client: AsyncClient, user: User, route: Route, redis):
    await redis.set(f"idem:booking:{user.id}:busy-key", IDEMPOTENCY_PENDING)
    headers = {**auth_headers(user), "Idempotency-Key": "busy-key"}
    response = await client.post("/bookings", headers=headers, json=_payload(route))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_failed_request_releases_idempotency_key(client: AsyncClient, user: User, route: Route, redis):
    headers = {**auth_headers(user), "Idempotency-Key": "retry-key"}
    bad = await client.post("/bookings", headers=headers, json=_payload(route, scheduled_at=future(-1)))
    assert bad.status_code == 400
    assert await redis.get(f"idem:booking:{user.id}:retry-key") is None

    good = await client.post("/bookings", headers=headers, json=_payload(route))
    assert good.status_code == 201


# ── Reads ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_only_own_bookings(client: AsyncClient, user: User, other_user: User, route: Route):
    await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    await client.post("/bookings", headers=auth_headers(other_user), json=_payload(route))

    response = await client.get("/bookings", headers=auth_headers(user))
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["currentPage"] == 1
    assert body["data"][0]["user_id"] == str(user.id)


@pytest.mark.asyncio
async def test_other_user_cannot_view_booking(client: AsyncClient, user: User, other_user: User, route: Route):
    created = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    booking_id = created.json()["data"]["id"]

    response = await client.get(f"/bookings/{booking_id}", headers=auth_headers(other_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_status_history_records_each_transition(client: AsyncClient, user: User, route: Route):
    created = await client.post(
        "/bookings", headers=auth_headers(user),
        json=_payload(route, payment={"method": "card", "token": "tok_visa"}),
    )
    booking_id = created.json()["data"]["id"]

    response = await client.get(f"/bookings/{booking_id}/status-history", headers=auth_headers(user))
    assert response.status_code == 200
    steps = [(h["from_status"], h["to_status"]) for h in response.json()["data"]]
    assert steps == [(None, "pending_payment"), ("pending_payment", "confirmed")]


# ── Updates ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_owner_updates_passengers_reprices(client: AsyncClient, user: User, route: Route):
    created = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    booking_id = created.json()["data"]["id"]

    response = await client.put(
        f"/bookings/{booking_id}",
        headers=auth_headers(user),
        json={"passengers": [{"name": "A"}, {"name": "B"}, {"name": "C"}]},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["passenger_count"] == 3
    assert data["total_amount"] == 60.0


@pytest.mark.asyncio
async def test_user_cannot_set_status(client: AsyncClient, user: User, route: Route):
    created = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    booking_id = created.json()["data"]["id"]

    response = await client.put(
        f"/bookings/{booking_id}", headers=auth_headers(user), json={"status": "confirmed"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_invalid_transition_rejected(
    client: AsyncClient, user: User, admin_user: User, route: Route
):
    created = await client.post(
        "/bookings", headers=auth_headers(user),
        json=_payload(route, payment={"method": "card", "token": "tok_visa"}),
    )
    booking_id = created.json()["data"]["id"]

    response = await client.put(
        f"/bookings/{booking_id}", headers=auth_headers(admin_user), json={"status": "pending_payment"}
    )
    assert response.status_code == 400
    assert "Invalid booking status transition" in response.json()["message"]


async def _paid_booking(client: AsyncClient, user: User, route: Route) -> dict:
    created = await client.post(
        "/bookings", headers=auth_headers(user),
        json=_payload(route, payment={"method": "card", "token": "tok_visa"}),
    )
    assert created.json()["data"]["status"] == "confirmed"
    return created.json()["data"]


async def _refund_count(db: AsyncSession) -> int:
    return await db.scalar(select(func.count(PaymentRefund.id)))


@pytest.mark.asyncio
async def test_admin_cannot_confirm_unpaid_booking(
    client: AsyncClient, user: User, admin_user: User, route: Route, db: AsyncSession
):
    created = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    booking_id = created.json()["data"]["id"]

    response = await client.put(
        f"/bookings/{booking_id}", headers=auth_headers(admin_user), json={"status": "confirmed"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Booking can only be confirmed by a successful payment"

    fetched = await client.get(f"/bookings/{booking_id}", headers=auth_headers(user))
    assert fetched.json()["data"]["status"] == "pending_payment"
    assert fetched.json()["data"]["trip_id"] is None
    assert await db.scalar(select(func.count(Payment.id))) == 0


@pytest.mark.asyncio
async def test_admin_cancel_refunds_and_releases_trip(
    client: AsyncClient, user: User, admin_user: User, route: Route, db: AsyncSession
):
    booking = await _paid_booking(client, user, route)

    response = await client.put(
        f"/bookings/{booking['id']}",
        headers=auth_headers(admin_user),
        json={"status": "cancelled", "reason": "Duplicate booking"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    # More than 24h ahead: full refund, so the booking ends refunded
    assert data["status"] == "refunded"
    assert data["payment_status"] == "refunded"
    assert data["refund_amount"] == 20.0
    assert data["cancellation_reason"] == "Duplicate booking"
    assert await _refund_count(db) == 1

    trip = await db.get(Trip, uuid.UUID(booking["trip_id"]))
    await db.refresh(trip)
    assert trip.status == TripStatus.CANCELLED


@pytest.mark.asyncio
async def test_admin_refund_refunds_payment(
    client: AsyncClient, user: User, admin_user: User, route: Route, db: AsyncSession
):
    booking = await _paid_booking(client, user, route)

    response = await client.put(
        f"/bookings/{booking['id']}", headers=auth_headers(admin_user), json={"status": "refunded"}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "refunded"
    assert data["payment_status"] == "refunded"
    assert data["refund_amount"] == 20.0

    payment = await db.scalar(select(Payment).where(Payment.booking_id == uuid.UUID(booking["id"])))
    await db.refresh(payment)
    assert payment.status == PaymentStatus.REFUNDED
    assert await _refund_count(db) == 1

    history = await client.get(f"/bookings/{booking['id']}/status-history", headers=auth_headers(user))
    steps = {(h["from_status"], h["to_status"]) for h in history.json()["data"]}
    assert {("confirmed", "cancelled"), ("cancelled", "refunded")} <= steps


@pytest.mark.asyncio
async def test_admin_refund_without_payment_rejected(
    client: AsyncClient, user: User, admin_user: User, route: Route, db: AsyncSession
):
    created = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    booking_id = created.json()["data"]["id"]
    await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(user), json={})

    response = await client.put(
        f"/bookings/{booking_id}", headers=auth_headers(admin_user), json={"status": "refunded"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Booking has no refundable payment"
    assert await _refund_count(db) == 0


@pytest.mark.asyncio
async def test_admin_cannot_complete_booking_directly(
    client: AsyncClient, user: User, admin_user: User, route: Route
):
    booking = await _paid_booking(client, user, route)

    response = await client.put(
        f"/bookings/{booking['id']}", headers=auth_headers(admin_user), json={"status": "completed"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Bookings are completed by completing their trip"

    fetched = await client.get(f"/bookings/{booking['id']}", headers=auth_headers(user))
    assert fetched.json()["data"]["status"] == "confirmed"


# ── Cancellation ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cancel_unpaid_booking_refunds_nothing(client: AsyncClient, user: User, route: Route):
    created = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    booking_id = created.json()["data"]["id"]

    response = await client.put(
        f"/bookings/{booking_id}/cancel", headers=auth_headers(user), json={"reason": "Plans changed"}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "cancelled"
    assert data["refund_amount"] == 0.0
    assert data["cancellation_reason"] == "Plans changed"


@pytest.mark.asyncio
async def test_cancel_more_than_24h_ahead_refunds_in_full(client: AsyncClient, user: User, route: Route):
    created = await client.post(
        "/bookings", headers=auth_headers(user),
        json=_payload(route, scheduled_at=future(72), payment={"method": "card", "token": "tok_visa"}),
    )
    booking_id = created.json()["data"]["id"]

    response = await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(user), json={})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["refund_percentage"] == 100
    assert data["refund_amount"] == 20.0
    assert data["cancellation_fee"] == 0.0
    assert data["payment_status"] == "refunded"
    assert data["status"] == "refunded"


@pytest.mark.asyncio
async def test_cancel_18h_ahead_refunds_75_percent(
    client: AsyncClient, user: User, route: Route, db: AsyncSession
):
    created = await client.post(
        "/bookings", headers=auth_headers(user),
        json=_payload(route, scheduled_at=future(18), payment={"method": "card", "token": "tok_visa"}),
    )
    data = created.json()["data"]

    response = await client.put(f"/bookings/{data['id']}/cancel", headers=auth_headers(user), json={})
    assert response.status_code == 200
    cancelled = response.json()["data"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["refund_percentage"] == 75
    assert cancelled["refund_amount"] == 15.0
    assert cancelled["cancellation_fee"] == 5.0
    assert cancelled["payment_status"] == "partially_refunded"

    trip = await db.get(Trip, uuid.UUID(data["trip_id"]))
    await db.refresh(trip)
    assert trip.status.value == "cancelled"


@pytest.mark.asyncio
async def test_cancel_twice_rejected(client: AsyncClient, user: User, route: Route):
    created = await client.post("/bookings", headers=auth_headers(user), json=_payload(route))
    booking_id = created.json()["data"]["id"]

    await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(user), json={})
    response = await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(user), json={})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_cancel_releases_seats_on_shared_trip(
    client: AsyncClient, user: User, trip: Trip, db: AsyncSession
):
    payload = {"trip_id": str(trip.id), "passengers": [{"name": "Riya"}]}
    created = await client.post("/bookings", headers=auth_headers(user), json=payload)
    booking_id = created.json()["data"]["id"]

    await client.put(f"/bookings/{booking_id}/cancel", headers=auth_headers(user), json={})

    await db.refresh(trip)
    assert trip.available_seats == trip.total_seats
    assert trip.status.value == "confirmed"


# ── Check-in ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assigned_driver_checks_in_passenger(
    client: AsyncClient, user: User, route: Route, driver, driver_user: User, db: AsyncSession
):
    created = await client.post(
        "/bookings", headers=auth_headers(user),
        json=_payload(route, payment={"method": "card", "token": "tok_visa"}),
    )
    data = created.json()["data"]
    trip = await db.get(Trip, uuid.UUID(data["trip_id"]))
    trip.driver_id = driver.id
    await db.commit()

    response = await client.put(f"/bookings/{data['id']}/check-in", headers=auth_headers(driver_user))
    assert response.status_code == 200
    assert response.json()["data"]["checked_in"] is True

    again = await client.put(f"/bookings/{data['id']}/check-in", headers=auth_headers(driver_user))
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_rider_cannot_check_in(client: AsyncClient, user: User, route: Route):
    created = await client.post(
        "/bookings", headers=auth_headers(user),
        json=_payload(route, payment={"method": "card", "token": "tok_visa"}),
    )
    booking_id = created.json()["data"]["id"]
    response = await client.put(f"/bookings/{booking_id}/check-in", headers=auth_headers(user))
    assert response.status_code == 403
