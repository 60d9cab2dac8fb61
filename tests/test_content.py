"""
tests/test_content.py
"""

import pytest
from httpx import AsyncClient

from shared.models.models import User
from tests.conftest import auth_headers


async def _create(client: AsyncClient, admin_user: User, **overrides):
    payload = {
        "slug": "cancellation-policy",
        "title": "Cancellation policy",
        "body": "Full refund more than 24 hours before departure.",
        "content_type": "policy",
        **overrides,
    }
    return await client.post("/content", headers=auth_headers(admin_user), json=payload)


@pytest.mark.asyncio
async def test_drafts_are_hidden_from_public(client: AsyncClient, admin_user: User):
    created = await _create(client, admin_user)
    assert created.status_code == 201
    assert created.json()["data"]["published_at"] is None

    assert (await client.get("/content/cancellation-policy")).status_code == 404
    assert (await client.get("/content")).json()["total"] == 0

    admin_view = await client.get("/content/cancellation-policy", headers=auth_headers(admin_user))
    assert admin_view.status_code == 200


@pytest.mark.asyncio
async def test_publish_and_unpublish(client: AsyncClient, admin_user: User):
    await _create(client, admin_user)
    admin = auth_headers(admin_user)

    published = await client.put("/content/cancellation-policy/publish", headers=admin)
    assert published.json()["data"]["is_published"] is True
    first_published_at = published.json()["data"]["published_at"]
    assert first_published_at is not None

    public = await client.get("/content/cancellation-policy")
    assert public.json()["data"]["title"] == "Cancellation policy"

    await client.put("/content/cancellation-policy/publish", params={"published": False}, headers=admin)
    assert (await client.get("/content/cancellation-policy")).status_code == 404

    # Republishing keeps the original publication time
    again = await client.put("/content/cancellation-policy/publish", headers=admin)
    assert again.json()["data"]["published_at"] == first_published_at


@pytest.mark.asyncio
async def test_filter_by_type(client: AsyncClient, admin_user: User):
    await _create(client, admin_user, is_published=True)
    await _create(
        client, admin_user, slug="how-to-book", title="How do I book?", body="Pick a route.",
        content_type="faq", is_published=True,
    )

    faqs = await client.get("/content", params={"content_type": "faq"})
    assert [c["slug"] for c in faqs.json()["data"]] == ["how-to-book"]


@pytest.mark.asyncio
async def test_slug_rules(client: AsyncClient, admin_user: User):
    await _create(client, admin_user)

    duplicate = await _create(client, admin_user)
    assert duplicate.status_code == 409

    bad_slug = await _create(client, admin_user, slug="Not A Slug")
    assert bad_slug.status_code == 400


@pytest.mark.asyncio
async def test_update_and_delete(client: AsyncClient, user: User, admin_user: User):
    await _create(client, admin_user)
    admin = auth_headers(admin_user)

    forbidden = await client.put("/content/cancellation-policy", headers=auth_headers(user), json={"title": "x"})
    assert forbidden.status_code == 403

    updated = await client.put(
        "/content/cancellation-policy", headers=admin, json={"title": "Refund policy", "is_published": True}
    )
    assert updated.json()["data"]["title"] == "Refund policy"
    assert updated.json()["data"]["published_at"] is not None

    deleted = await client.delete("/content/cancellation-policy", headers=admin)
    assert deleted.status_code == 200
    assert (await client.get("/content/cancellation-policy", headers=admin)).status_code == 404
