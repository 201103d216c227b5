"""
Shared fixtures.

The environment is pointed at a throwaway SQLite database before any
quickserve module is imported, since settings are read at import time.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

_TMP_DIR = tempfile.mkdtemp(prefix="quickserve-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["ENV_MODE"] = "development"
os.environ["ORDER_STORE"] = "sql"
os.environ["CHANGE_FEED"] = "memory"

import httpx
import pytest

from quickserve.client import MenuItemSnapshot, QuickServeClient
from quickserve.core.config import get_settings
from quickserve.database import dispose_engine, drop_db, init_db
from quickserve.main import app
from quickserve.services.lifecycle import OrderLifecycleEngine, reset_order_engine
from quickserve.services.orders import InMemoryOrderStore, OrderLine, reset_order_store
from quickserve.services.sync import InMemoryChangeFeed, reset_change_feed


# =============================================================================
# FIXTURE DATA
# =============================================================================

MENU = [
    {"id": 1, "name": "Healthy Veg Thali", "price": 120, "category": "food", "location": "medical"},
    {"id": 2, "name": "Grilled Chicken Salad", "price": 150, "category": "food", "location": "medical"},
    {"id": 4, "name": "Fresh Fruit Juice", "price": 45, "category": "drink", "location": "medical"},
    {"id": 7, "name": "Classic Burger", "price": 149, "category": "food", "location": "bitbites"},
    {"id": 10, "name": "Cappuccino", "price": 79, "category": "drink", "location": "bitbites"},
]

MENU_SEED = [
    {"name": "Healthy Veg Thali", "price": 120, "category": "food", "location": "medical"},
    {"name": "Fresh Fruit Juice", "price": 45, "category": "drink", "location": "medical"},
    {"name": "Soup of the Day", "price": 60, "category": "food", "location": "medical", "available": False},
    {"name": "Classic Burger", "price": 149, "category": "food", "location": "bitbites"},
    {"name": "Cappuccino", "price": 79, "category": "drink", "location": "bitbites"},
]


def line(menu_item_id: int, name: str, price: float, quantity: int) -> OrderLine:
    return OrderLine(menu_item_id=menu_item_id, name=name, price=price, quantity=quantity)


THALI_X2 = line(1, "Healthy Veg Thali", 120, 2)
JUICE_X1 = line(4, "Fresh Fruit Juice", 45, 1)
BURGER_X1 = line(7, "Classic Burger", 149, 1)


def order_payload(location: str = "medical", **overrides) -> dict:
    payload = {
        "items": [THALI_X2.to_dict(), JUICE_X1.to_dict()] if location == "medical" else [BURGER_X1.to_dict()],
        "location": location,
        "client_name": "Asha",
    }
    payload.update(overrides)
    return payload


class StepClock:
    """Deterministic clock: every call is one second later."""

    def __init__(self, start: datetime = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class ScriptedRandom:
    """Random source returning scripted token numbers (last one repeats)."""

    def __init__(self, *numbers: int):
        self.numbers = list(numbers)

    def randint(self, a: int, b: int) -> int:
        value = self.numbers.pop(0) if len(self.numbers) > 1 else self.numbers[0]
        assert a <= value <= b
        return value


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def menu() -> dict[int, MenuItemSnapshot]:
    return {item["id"]: MenuItemSnapshot.from_dict(item) for item in MENU}


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def engine(store, feed, clock) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(store, feed, clock=clock)


# =============================================================================
# APPLICATION FIXTURES
# =============================================================================

def _reset_caches() -> None:
    app.dependency_overrides.clear()
    reset_order_engine()
    reset_order_store()
    reset_change_feed()
    get_settings.cache_clear()


@pytest.fixture
async def db():
    """Fresh tables for every test."""
    _reset_caches()
    await drop_db()
    await init_db()
    yield
    await drop_db()
    await dispose_engine()
    _reset_caches()


@pytest.fixture
async def http(db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def api(db):
    async with QuickServeClient("http://test", transport=httpx.ASGITransport(app=app)) as client:
        yield client


@pytest.fixture
async def seeded_menu(http) -> list[dict]:
    items = []
    for item in MENU_SEED:
        response = await http.post("/api/menu", json=item)
        assert response.status_code == 200
        items.append(response.json())
    return items
