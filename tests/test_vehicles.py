"""
tests/test_vehicles.py
"""

import pytest
from httpx import AsyncClient

from shared.models.models import Driver, User
from tests.conftest import auth_headers

VEHICLE = {
    "make": "Toyota",
    "model": "HiAce",
    "year": 2022,
    "color": "white",
    "license_plate": " ny-4521 ",
    "vehicle_type": "van",
    "capacity": 12,
    "amenities": ["wifi", "ac"],
}


async def _register(client: AsyncClient, owner: User, **overrides) -> dict:
    response = await client.post("/vehicles", headers=auth_headers(owner), json={**VEHICLE, **overrides})
    assert response.status_code == 201
    return response.json()["data"]


@pytest.mark.asyncio
async def test_driver_registers_vehicle(client: AsyncClient, driver_user: User, driver: Driver):
    vehicle = await _register(client, driver_user)
    assert vehicle["license_plate"] == "NY-4521"
    assert vehicle["owner_id"] == str(driver_user.id)
    assert vehicle["status"] == "active"
    assert vehicle["vehicle_type"] == "van"


@pytest.mark.asyncio
async def test_rider_cannot_register_vehicle(client: AsyncClient, user: User):
    response = await client.post("/vehicles", headers=auth_headers(user), json=VEHICLE)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_duplicate_plate_conflict(client: AsyncClient, driver_user: User, admin_user: User, driver: Driver):
    await _register(client, driver_user)
    response = await client.post(
        "/vehicles", headers=auth_headers(admin_user), json={**VEHICLE, "license_plate": "NY-4521"}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_driver_sees_only_own_vehicles(client: AsyncClient, driver_user: User, admin_user: User, driver: Driver):
    await _register(client, driver_user)
    await _register(client, admin_user, license_plate="FLEET-1")

    own = await client.get("/vehicles", headers=auth_headers(driver_user))
    assert own.json()["total"] == 1

    fleet = await client.get("/vehicles", params={"min_capacity": 10}, headers=auth_headers(admin_user))
    assert fleet.json()["total"] == 2


@pytest.mark.asyncio
async def test_assign_and_unassign_driver(client: AsyncClient, driver_user: User, driver: Driver):
    vehicle = await _register(client, driver_user)
    headers = auth_headers(driver_user)

    assigned = await client.put(
        f"/vehicles/{vehicle['id']}/assign-driver", headers=headers, json={"driver_id": str(driver.id)}
    )
    assert assigned.status_code == 200
    assert assigned.json()["data"]["current_driver_id"] == str(driver.id)

    profile = await client.get("/drivers/me", headers=headers)
    assert profile.json()["data"]["vehicle_id"] == vehicle["id"]

    unassigned = await client.put(f"/vehicles/{vehicle['id']}/unassign-driver", headers=headers)
    assert unassigned.status_code == 200
    assert unassigned.json()["data"]["current_driver_id"] is None

    again = await client.put(f"/vehicles/{vehicle['id']}/unassign-driver", headers=headers)
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_reassigning_driver_releases_previous_vehicle(
    client: AsyncClient, admin_user: User, driver: Driver
):
    admin = auth_headers(admin_user)
    first = await _register(client, admin_user, license_plate="FLEET-1")
    second = await _register(client, admin_user, license_plate="FLEET-2")

    await client.put(f"/vehicles/{first['id']}/assign-driver", headers=admin, json={"driver_id": str(driver.id)})
    await client.put(f"/vehicles/{second['id']}/assign-driver", headers=admin, json={"driver_id": str(driver.id)})

    released = await client.get(f"/vehicles/{first['id']}", headers=admin)
    assert released.json()["data"]["current_driver_id"] is None
    held = await client.get(f"/vehicles/{second['id']}", headers=admin)
    assert held.json()["data"]["current_driver_id"] == str(driver.id)


@pytest.mark.asyncio
async def test_other_driver_cannot_manage_vehicle(
    client: AsyncClient, driver_user: User, admin_user: User, driver: Driver
):
    vehicle = await _register(client, admin_user, license_plate="FLEET-1")
    response = await client.put(
        f"/vehicles/{vehicle['id']}", headers=auth_headers(driver_user), json={"color": "black"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_delete_vehicle_is_soft(client: AsyncClient, driver_user: User, driver: Driver):
    vehicle = await _register(client, driver_user)
    headers = auth_headers(driver_user)

    response = await client.delete(f"/vehicles/{vehicle['id']}", headers=headers)
    assert response.status_code == 200

    gone = await client.get(f"/vehicles/{vehicle['id']}", headers=headers)
    assert gone.status_code == 404

    # The plate stays reserved by the deleted row
    reuse = await client.post("/vehicles", headers=headers, json=VEHICLE)
    assert reuse.status_code == 409
