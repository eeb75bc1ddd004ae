"""
Integration tests for the REST API endpoints.

Runs the real routes against the in-memory SQLite database from
``conftest``; only the DB session dependency is overridden and the
dispatcher worker is patched out.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from loadmatch.api.middleware import limiter
from loadmatch.domain.enums import UserType
from tests.conftest import DELHI, JAIPUR, make_user


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def users(session_factory):
    async with session_factory() as session:
        people = {
            "transporter": await make_user(session, UserType.TRANSPORTER, "Aarav"),
            "trucker": await make_user(session, UserType.TRUCKER, "Vikram"),
            "rival": await make_user(session, UserType.TRUCKER, "Ravi"),
            "admin": await make_user(session, UserType.ADMIN, "Admin"),
        }
        await session.commit()
        return {role: {"X-User-Id": str(user.id)} for role, user in people.items()}


@pytest_asyncio.fixture
async def client(session_factory, users):
    """AsyncClient wired to the test database."""
    with (
        patch(
            "loadmatch.workers.dispatcher.start_dispatch_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "loadmatch.workers.dispatcher.stop_dispatch_loop",
            new_callable=AsyncMock,
        ),
    ):

        async def _test_db():
            async with session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        from loadmatch.api.app import create_app
        from loadmatch.api.dependencies import get_db

        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        limiter.enabled = False

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

        limiter.enabled = True


def _place(name, point):
    return {
        "place_name": name,
        "coordinates": {"latitude": point[0], "longitude": point[1]},
    }


LOAD_BODY = {
    "material_type": "STEEL",
    "weight": 18,
    "source": _place("Delhi", DELHI),
    "destination": _place("Jaipur", JAIPUR),
    "vehicle_body_type": "OPEN_BODY",
    "vehicle_type": "TRUCK",
    "number_of_wheels": 10,
    "offered_total": 42000,
}

TRUCK_BODY = {
    "permit": "NATIONAL",
    "truck_number": "dl 01 ab 1234",
    "location": _place("Delhi", DELHI),
    "capacity": 20,
    "vehicle_body_type": "OPEN_BODY",
    "truck_type": "TRUCK",
    "truck_body_type": "OPEN_FULL_BODY",
    "tyre_count": 10,
}


async def _post_load(client, headers, **changes):
    resp = await client.post("/api/v1/loads", json={**LOAD_BODY, **changes}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _post_truck(client, headers, number="DL01AB1234"):
    resp = await client.post(
        "/api/v1/trucks", json={**TRUCK_BODY, "truck_number": number}, headers=headers
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _request_load(client, headers, load_id, truck_id, amount=39000):
    resp = await client.post(
        "/api/v1/bids",
        json={
            "bid_type": "TRUCK_REQUEST",
            "load_id": load_id,
            "truck_id": truck_id,
            "bidded_total": amount,
        },
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_identity_header_required(client: AsyncClient):
    resp = await client.get("/api/v1/loads/mine")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Authentication required"}


@pytest.mark.asyncio
async def test_unknown_user_rejected(client: AsyncClient):
    resp = await client.get("/api/v1/loads/mine", headers={"X-User-Id": "987654"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_and_get_load(client: AsyncClient, users):
    load = await _post_load(client, users["transporter"])
    assert load["is_active"] is True
    assert load["source_place"] == "Delhi"
    assert load["current_bid_id"] is None

    resp = await client.get(f"/api/v1/loads/{load['id']}", headers=users["trucker"])
    assert resp.status_code == 200
    assert resp.json()["offered_total"] == 42000

    mine = await client.get("/api/v1/loads/mine", headers=users["transporter"])
    assert [item["id"] for item in mine.json()] == [load["id"]]


@pytest.mark.asyncio
async def test_trucker_cannot_post_load(client: AsyncClient, users):
    resp = await client.post("/api/v1/loads", json=LOAD_BODY, headers=users["trucker"])
    assert resp.status_code == 403
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_malformed_body_is_400(client: AsyncClient, users):
    body = {**LOAD_BODY, "material_type": "GOLD"}
    resp = await client.post("/api/v1/loads", json=body, headers=users["transporter"])
    assert resp.status_code == 400
    data = resp.json()
    assert data["success"] is False
    assert data["message"].startswith("material_type")


@pytest.mark.asyncio
async def test_missing_load_is_404(client: AsyncClient, users):
    resp = await client.get("/api/v1/loads/9999", headers=users["trucker"])
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Load not found"}


@pytest.mark.asyncio
async def test_truck_number_normalized_and_unique(client: AsyncClient, users):
    truck = await _post_truck(client, users["trucker"], number="dl 01 ab 1234")
    assert truck["truck_number"] == "DL01AB1234"
    assert truck["rc_status"] == "PENDING"

    resp = await client.post(
        "/api/v1/trucks", json=TRUCK_BODY, headers=users["rival"]
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_nearby_loads(client: AsyncClient, users):
    load = await _post_load(client, users["transporter"])
    resp = await client.get(
        "/api/v1/loads/nearby",
        params={"lat": DELHI[0], "lng": DELHI[1], "radius": 25},
        headers=users["trucker"],
    )
    assert resp.status_code == 200
    page = resp.json()
    assert page["total"] == 1
    assert page["items"][0]["id"] == load["id"]
    assert page["items"][0]["distance_km"] == 0.0

    by_dest = await client.get(
        "/api/v1/loads/nearby",
        params={"lat": DELHI[0], "lng": DELHI[1], "radius": 25, "side": "destination"},
        headers=users["trucker"],
    )
    assert by_dest.json()["total"] == 0


@pytest.mark.asyncio
async def test_nearby_requires_coordinates(client: AsyncClient, users):
    resp = await client.get("/api/v1/trucks/nearby", headers=users["transporter"])
    assert resp.status_code == 400
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_dual_sided_search(client: AsyncClient, users):
    load = await _post_load(client, users["transporter"])
    resp = await client.get(
        "/api/v1/loads/nearby/dual",
        params={
            "source_lat": DELHI[0],
            "source_lng": DELHI[1],
            "destination_lat": JAIPUR[0],
            "destination_lng": JAIPUR[1],
            "radius": 10,
        },
        headers=users["trucker"],
    )
    assert resp.status_code == 200
    [item] = resp.json()["items"]
    assert item["id"] == load["id"]
    assert item["match_type"] == "BOTH"

    missing = await client.get("/api/v1/loads/nearby/dual", headers=users["trucker"])
    assert missing.status_code == 400


@pytest.mark.asyncio
async def test_bid_accept_flow(client: AsyncClient, users):
    load = await _post_load(client, users["transporter"])
    truck = await _post_truck(client, users["trucker"], number="RJ14CD0001")
    rival_truck = await _post_truck(client, users["rival"], number="RJ14CD0002")
    bid = await _request_load(client, users["trucker"], load["id"], truck["id"])
    losing = await _request_load(
        client, users["rival"], load["id"], rival_truck["id"], amount=41000
    )
    assert bid["status"] == "PENDING"
    assert bid["offered_total"] == 42000

    offers = await client.get("/api/v1/offers", headers=users["transporter"])
    assert {o["id"] for o in offers.json()} == {bid["id"], losing["id"]}

    resp = await client.post(
        f"/api/v1/bids/{bid['id']}/accept", headers=users["transporter"]
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"

    reloaded = await client.get(f"/api/v1/loads/{load['id']}", headers=users["transporter"])
    assert reloaded.json()["current_bid_id"] == bid["id"]

    rival_view = await client.get(f"/api/v1/bids/{losing['id']}", headers=users["rival"])
    assert rival_view.json()["status"] == "REJECTED"
    assert rival_view.json()["rejection_reason"] == "OTHER_BID_ACCEPTED"

    again = await client.post(
        f"/api/v1/offers/{losing['id']}/accept", headers=users["transporter"]
    )
    assert again.status_code == 409
    assert again.json()["success"] is False


@pytest.mark.asyncio
async def test_only_recipient_can_accept(client: AsyncClient, users):
    load = await _post_load(client, users["transporter"])
    truck = await _post_truck(client, users["trucker"], number="MH12DE0001")
    bid = await _request_load(client, users["trucker"], load["id"], truck["id"])
    resp = await client.post(f"/api/v1/bids/{bid['id']}/accept", headers=users["trucker"])
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_reject_via_status_endpoint(client: AsyncClient, users):
    load = await _post_load(client, users["transporter"])
    truck = await _post_truck(client, users["trucker"], number="MH12DE0002")
    bid = await _request_load(client, users["trucker"], load["id"], truck["id"])

    resp = await client.patch(
        f"/api/v1/bids/{bid['id']}/status",
        json={"status": "REJECTED", "rejection_reason": "PRICE_TOO_LOW"},
        headers=users["transporter"],
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "REJECTED"
    assert resp.json()["rejection_reason"] == "PRICE_TOO_LOW"

    stats = await client.get("/api/v1/bids/stats", headers=users["trucker"])
    assert stats.json() == [
        {
            "status": "REJECTED",
            "bid_type": "TRUCK_REQUEST",
            "total_bids": 1,
            "total_amount": 39000,
            "average_amount": 39000,
        }
    ]


@pytest.mark.asyncio
async def test_unknown_bid_type_is_400(client: AsyncClient, users):
    resp = await client.post(
        "/api/v1/bids",
        json={"bid_type": "AUCTION", "load_id": 1, "truck_id": 1, "bidded_total": 10},
        headers=users["trucker"],
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_missing_bid_is_404(client: AsyncClient, users):
    resp = await client.get("/api/v1/bids/9999", headers=users["trucker"])
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_rc_verification_admin_only(client: AsyncClient, users):
    truck = await _post_truck(client, users["trucker"], number="HR26X0001")
    url = f"/api/v1/admin/trucks/{truck['id']}/rc"

    denied = await client.patch(url, json={"status": "APPROVED"}, headers=users["trucker"])
    assert denied.status_code == 403

    resp = await client.patch(url, json={"status": "APPROVED"}, headers=users["admin"])
    assert resp.status_code == 200
    assert resp.json()["is_rc_verified"] is True
