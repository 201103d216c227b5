"""
WebSocket refresh channel, driven through Starlette's TestClient so the
application lifespan runs as it would under uvicorn.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from quickserve import main
from quickserve.core.config import get_settings
from quickserve.main import app
from quickserve.models import OrderStatus, Site
from quickserve.services.lifecycle import reset_order_engine
from quickserve.services.orders import reset_order_store
from quickserve.services.sync import ChangeEvent, InMemoryChangeFeed, reset_change_feed

from .conftest import order_payload


def _reset() -> None:
    app.dependency_overrides.clear()
    reset_order_engine()
    reset_order_store()
    reset_change_feed()
    get_settings.cache_clear()


@pytest.fixture
def client():
    _reset()
    with TestClient(app) as test_client:
        yield test_client
    _reset()


def test_site_channel_signals_new_and_advanced_orders(client):
    with client.websocket_connect("/ws/orders?location=medical") as ws:
        assert ws.receive_json() == {"type": "subscribed", "location": "medical", "user_id": None}

        order = client.post("/api/orders", json=order_payload("medical")).json()
        assert ws.receive_json() == {"type": "refresh", "order_id": order["id"], "status": "pending"}

        response = client.patch(f"/api/orders/{order['id']}/status", json={"status": "preparing"})
        assert response.status_code == 200
        assert ws.receive_json() == {"type": "refresh", "order_id": order["id"], "status": "preparing"}


def test_user_channel_only_sees_own_orders(client):
    with client.websocket_connect("/ws/orders?user_id=user-1") as ws:
        assert ws.receive_json()["type"] == "subscribed"

        client.post("/api/orders", json=order_payload("medical", user_id="user-2"))
        mine = client.post("/api/orders", json=order_payload("bitbites", user_id="user-1")).json()

        message = ws.receive_json()
        assert message["type"] == "refresh"
        assert message["order_id"] == mine["id"]


def test_rejected_transition_sends_nothing(client):
    with client.websocket_connect("/ws/orders?location=bitbites") as ws:
        ws.receive_json()
        order = client.post("/api/orders", json=order_payload("bitbites")).json()
        assert ws.receive_json()["order_id"] == order["id"]

        assert client.patch(f"/api/orders/{order['id']}/status", json={"status": "ready"}).status_code == 400
        client.post(f"/api/orders/{order['id']}/cancel")
        assert ws.receive_json() == {"type": "refresh", "order_id": order["id"], "status": "cancelled"}


class FlakySocket:
    """Socket whose sends fail once the greeting is out."""

    def __init__(self):
        self.sent = []
        self.disconnected = asyncio.Event()

    async def accept(self):
        pass

    async def send_json(self, data):
        if self.sent:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(data)

    async def receive(self):
        await self.disconnected.wait()
        return {"type": "websocket.disconnect"}


async def test_failed_send_does_not_escape_the_handler(monkeypatch):
    feed = InMemoryChangeFeed()
    monkeypatch.setattr(main, "get_change_feed", lambda: feed)
    socket = FlakySocket()

    handler = asyncio.create_task(main.orders_stream(socket, Site.MEDICAL, None))
    while feed.subscriber_count == 0:
        await asyncio.sleep(0.01)

    await feed.publish(ChangeEvent("created", 1, Site.MEDICAL, OrderStatus.PENDING))
    await asyncio.sleep(0.05)
    socket.disconnected.set()

    await asyncio.wait_for(handler, timeout=1)
    assert socket.sent[0]["type"] == "subscribed"
    assert feed.subscriber_count == 0
