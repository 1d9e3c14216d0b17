"""Tests for the FastAPI endpoints and ``/execute`` dispatch.

Startup is not run (the ASGI transport sends no lifespan events), so each test
wires ``main.tools`` to a driver backed by the in-memory fakes.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from whereabouts import main
from whereabouts.schemas.friends import GranularityTier
from whereabouts.tools import WhereaboutsTools


@pytest_asyncio.fixture
async def client():
    """Create an async test client for the FastAPI app."""
    transport = ASGITransport(app=main.app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def ready(monkeypatch, driver):
    """Install tools around the test driver."""
    tools = WhereaboutsTools(driver)
    monkeypatch.setattr(main, "tools", tools)
    return tools


async def _execute(client, tool_name, **arguments):
    resp = await client.post("/execute", json={"tool_name": tool_name, "arguments": arguments})
    assert resp.status_code == 200
    return resp.json()


# ---------------------------------------------------------------------------
# Health / manifest
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health_before_startup(client, monkeypatch):
    monkeypatch.setattr(main, "tools", None)
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "starting"


@pytest.mark.asyncio
async def test_health_when_ready(client, ready):
    resp = await client.get("/health")
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_manifest(client):
    resp = await client.get("/manifest")
    assert resp.status_code == 200
    data = resp.json()
    assert data["module_name"] == "whereabouts"
    names = [t["name"] for t in data["tools"]]
    assert "whereabouts.create_or_update_location" in names
    assert "whereabouts.send_friend_request" in names


# ---------------------------------------------------------------------------
# Execute — dispatch errors
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_execute_not_ready(client, monkeypatch):
    monkeypatch.setattr(main, "tools", None)
    data = await _execute(client, "whereabouts.list_friends")
    assert data["success"] is False
    assert data["error"] == "Service not ready"


@pytest.mark.asyncio
async def test_execute_unknown_tool(client, ready):
    data = await _execute(client, "whereabouts.teleport")
    assert data["success"] is False
    assert "Unknown tool" in data["error"]


@pytest.mark.asyncio
async def test_execute_missing_argument(client, ready):
    data = await _execute(client, "whereabouts.send_friend_request", peer_id="bob")
    assert data["success"] is False
    assert data["error_kind"] == "invalid_argument"


@pytest.mark.asyncio
async def test_execute_unexpected_argument(client, ready):
    data = await _execute(client, "whereabouts.list_friends", verbose=True)
    assert data["error_kind"] == "invalid_argument"


@pytest.mark.asyncio
async def test_execute_bad_tier(client, ready):
    data = await _execute(client, "whereabouts.send_friend_request", peer_id="bob", tier="street")
    assert data["success"] is False
    assert data["error_kind"] == "invalid_argument"


@pytest.mark.asyncio
async def test_execute_reject_unknown(client, ready):
    data = await _execute(client, "whereabouts.reject_friend_request", peer_id="ghost")
    assert data["error_kind"] == "not_found"


@pytest.mark.asyncio
async def test_execute_transport_failure(client, ready, transport):
    transport.unreachable.add("bob")
    data = await _execute(client, "whereabouts.send_friend_request", peer_id="bob", tier="city")
    assert data["error_kind"] == "transport_failure"


# ---------------------------------------------------------------------------
# Execute — operations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_location_broadcasts(client, ready, driver, transport):
    driver.book.receive_request("bob")
    driver.book.accept("bob", GranularityTier.CITY)

    data = await _execute(
        client,
        "whereabouts.create_or_update_location",
        start_time=100,
        end_time=200,
        latitude=48.85,
        longitude=2.36,
        description="Paris trip",
    )

    assert data["success"] is True
    result = data["result"]
    assert result["location"]["owner"] == "p1"
    assert result["location"]["latitude"] == 48.85
    assert result["broadcast"]["summary"] == "sent to 1/1 friends"
    [(recipient, message)] = transport.sent
    assert recipient == "bob"
    assert message.locations[0].latitude == 48.8566


@pytest.mark.asyncio
async def test_create_location_invalid_coordinates(client, ready):
    data = await _execute(
        client,
        "whereabouts.create_or_update_location",
        start_time=100,
        end_time=200,
        latitude=123.0,
        longitude=2.36,
    )
    assert data["error_kind"] == "invalid_argument"


@pytest.mark.asyncio
async def test_get_location_bad_uuid(client, ready):
    data = await _execute(client, "whereabouts.get_location", location_id="not-a-uuid")
    assert data["error_kind"] == "invalid_argument"


@pytest.mark.asyncio
async def test_location_lifecycle(client, ready):
    created = await _execute(
        client,
        "whereabouts.create_or_update_location",
        start_time=100,
        end_time=200,
        latitude=1.0,
        longitude=2.0,
    )
    location_id = created["result"]["location"]["id"]

    listed = await _execute(client, "whereabouts.list_locations", start=150, end=300)
    assert listed["result"]["count"] == 1

    deleted = await _execute(client, "whereabouts.delete_location", location_id=location_id)
    assert deleted["success"] is True

    missing = await _execute(client, "whereabouts.get_location", location_id=location_id)
    assert missing["error_kind"] == "not_found"


@pytest.mark.asyncio
async def test_friend_request_flow(client, ready, driver, transport):
    sent = await _execute(client, "whereabouts.send_friend_request", peer_id="bob", tier="close_friend")
    assert sent["result"]["status"] == "pending"
    assert sent["result"]["request"]["direction"] == "outgoing"
    assert sent["result"]["request"]["tier"] == "city"

    pending = await _execute(client, "whereabouts.list_pending", direction="outgoing")
    assert pending["result"]["count"] == 1

    accepted = await _execute(client, "whereabouts.accept_friend_request", peer_id="bob")
    assert accepted["error_kind"] == "invalid_transition"

    driver.book.receive_request("carol")
    accepted = await _execute(client, "whereabouts.accept_friend_request", peer_id="carol")
    assert accepted["result"]["friend"]["tier"] == "country"

    friends = await _execute(client, "whereabouts.list_friends")
    assert [f["peer_id"] for f in friends["result"]["friends"]] == ["carol"]


@pytest.mark.asyncio
async def test_list_pending_bad_direction(client, ready):
    data = await _execute(client, "whereabouts.list_pending", direction="sideways")
    assert data["error_kind"] == "invalid_argument"


@pytest.mark.asyncio
async def test_custom_lists(client, ready):
    await _execute(client, "whereabouts.add_to_custom_list", list_name="family", peer_id="alice")
    await _execute(client, "whereabouts.add_to_custom_list", list_name="family", peer_id="bob")
    removed = await _execute(client, "whereabouts.remove_from_custom_list", list_name="family", peer_id="alice")
    assert removed["result"]["members"] == ["bob"]

    lists = await _execute(client, "whereabouts.list_custom_lists")
    assert lists["result"]["lists"] == {"family": ["bob"]}


@pytest.mark.asyncio
async def test_nearest_city(client, ready):
    data = await _execute(client, "whereabouts.nearest_city", longitude=2.36, latitude=48.85)
    assert data["result"]["name"] == "Paris"


@pytest.mark.asyncio
async def test_nearest_city_without_catalog(client, monkeypatch, make_driver, empty_index):
    monkeypatch.setattr(main, "tools", WhereaboutsTools(make_driver(index=empty_index)))

    data = await _execute(client, "whereabouts.nearest_city", longitude=2.36, latitude=48.85)

    assert data["error_kind"] == "not_found"
    assert "no reference points" in data["error"]
