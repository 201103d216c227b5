"""
Order lifecycle engine: creation, the status pipeline and queries.
"""

import random
import re
from datetime import datetime, timezone

import pytest

from quickserve.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from quickserve.models import OrderStatus, Site
from quickserve.services.lifecycle import (
    OrderLifecycleEngine,
    generate_token,
    next_status,
    status_rank,
)
from quickserve.services.orders import InMemoryOrderStore, OrderFilter
from quickserve.services.sync import InMemoryChangeFeed, OrderPredicate

from .conftest import BURGER_X1, JUICE_X1, THALI_X2, ScriptedRandom, line


async def _create(engine, location="medical", lines=(THALI_X2, JUICE_X1), **kwargs):
    kwargs.setdefault("client_name", "Asha")
    return await engine.create(lines, location, **kwargs)


# =============================================================================
# PIPELINE
# =============================================================================

def test_next_status_follows_pipeline():
    assert next_status(OrderStatus.PENDING) == OrderStatus.PREPARING
    assert next_status(OrderStatus.PREPARING) == OrderStatus.READY
    assert next_status(OrderStatus.READY) == OrderStatus.COMPLETED
    assert next_status(OrderStatus.COMPLETED) is None
    assert next_status(OrderStatus.CANCELLED) is None


def test_status_rank_orders_cancelled_last():
    ranks = [status_rank(s) for s in (
        OrderStatus.PENDING,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    )]
    assert ranks == sorted(ranks)


def test_generate_token_prefix_depends_on_site():
    rng = random.Random(7)
    for _ in range(50):
        assert re.fullmatch(r"MED-[1-9]\d{2}", generate_token(Site.MEDICAL, rng))
        assert re.fullmatch(r"BIT-[1-9]\d{2}", generate_token(Site.BITBITES, rng))


# =============================================================================
# CREATE
# =============================================================================

async def test_create_computes_total_and_starts_pending(engine):
    order = await _create(engine, client_name="  Asha  ", table_number="T-5")

    assert order.id == 1
    assert order.total == 285
    assert order.status == OrderStatus.PENDING
    assert order.location == Site.MEDICAL
    assert order.client_name == "Asha"
    assert order.table_number == "T-5"
    assert order.client_phone is None
    assert re.fullmatch(r"MED-\d{3}", order.token)
    assert order.created_at == order.updated_at
    assert [(i.name, i.quantity) for i in order.items] == [
        ("Healthy Veg Thali", 2),
        ("Fresh Fruit Juice", 1),
    ]


async def test_create_at_bitbites_uses_bit_prefix(engine):
    order = await _create(engine, "bitbites", lines=(BURGER_X1,))
    assert order.token.startswith("BIT-")
    assert order.total == 149


async def test_create_rounds_total_to_cents(engine):
    order = await _create(engine, lines=(line(1, "Tea", 0.1, 3),))
    assert order.total == 0.3


@pytest.mark.parametrize(
    "lines, client_name, location",
    [
        ((), "Asha", "medical"),
        ((line(1, "Thali", 120, 0),), "Asha", "medical"),
        ((line(1, "Thali", -5, 1),), "Asha", "medical"),
        ((line(1, "Thali", 120, True),), "Asha", "medical"),
        ((THALI_X2,), "   ", "medical"),
        ((THALI_X2,), "Asha", "canteen"),
    ],
    ids=["empty", "zero-quantity", "negative-price", "bool-quantity", "blank-name", "unknown-site"],
)
async def test_create_rejects_invalid_input(engine, store, lines, client_name, location):
    with pytest.raises(ValidationError):
        await engine.create(lines, location, client_name)
    assert await store.query(OrderFilter()) == []


async def test_create_redraws_token_held_by_active_order(store):
    engine = OrderLifecycleEngine(store, rng=ScriptedRandom(101, 101, 202))
    first = await _create(engine)
    second = await _create(engine)

    assert first.token == "MED-101"
    assert second.token == "MED-202"


async def test_token_of_finished_order_can_be_reused(store):
    engine = OrderLifecycleEngine(store, rng=ScriptedRandom(101))
    first = await _create(engine)
    await engine.cancel(first.id)

    second = await _create(engine)
    assert second.token == "MED-101"


async def test_token_collision_accepted_after_max_attempts(store):
    engine = OrderLifecycleEngine(store, token_max_attempts=2, rng=ScriptedRandom(101))
    first = await _create(engine)
    second = await _create(engine)

    assert first.token == second.token == "MED-101"
    assert first.id != second.id


async def test_same_token_number_at_other_site_is_not_a_collision(store):
    engine = OrderLifecycleEngine(store, rng=ScriptedRandom(101))
    med = await _create(engine)
    bit = await _create(engine, "bitbites", lines=(BURGER_X1,))
    assert (med.token, bit.token) == ("MED-101", "BIT-101")


async def test_store_failure_propagates_from_create():
    engine = OrderLifecycleEngine(InMemoryOrderStore(failure_rate=1.0))
    with pytest.raises(StoreError):
        await _create(engine)


# =============================================================================
# ADVANCE
# =============================================================================

async def test_advance_walks_the_full_pipeline(engine):
    order = await _create(engine)

    for status in ("preparing", "ready", "completed"):
        order = await engine.advance(order.id, status)
        assert order.status == OrderStatus(status)

    assert order.updated_at > order.created_at


@pytest.mark.parametrize("requested", ["pending", "ready", "completed", "cancelled"])
async def test_advance_from_pending_only_allows_preparing(engine, requested):
    order = await _create(engine)

    with pytest.raises(InvalidTransitionError):
        await engine.advance(order.id, requested)
    assert (await engine.get(order.id)).status == OrderStatus.PENDING


async def test_advance_rejects_backwards_move(engine):
    order = await _create(engine)
    await engine.advance(order.id, "preparing")
    await engine.advance(order.id, "ready")

    with pytest.raises(InvalidTransitionError):
        await engine.advance(order.id, "pending")
    assert (await engine.get(order.id)).status == OrderStatus.READY


async def test_completed_order_cannot_move(engine):
    order = await _create(engine)
    for status in ("preparing", "ready", "completed"):
        await engine.advance(order.id, status)

    for requested in OrderStatus:
        with pytest.raises(InvalidTransitionError):
            await engine.advance(order.id, requested)


async def test_advance_rejects_unknown_status_name(engine):
    order = await _create(engine)
    with pytest.raises(InvalidTransitionError):
        await engine.advance(order.id, "served")


async def test_advance_unknown_order(engine):
    with pytest.raises(NotFoundError, match="Order not found"):
        await engine.advance(999, "preparing")


async def test_random_requests_never_move_status_backwards(engine):
    rng = random.Random(42)
    order = await _create(engine)
    seen = [order.status]

    for _ in range(60):
        try:
            seen.append((await engine.advance(order.id, rng.choice(list(OrderStatus)))).status)
        except InvalidTransitionError:
            seen.append((await engine.get(order.id)).status)

    ranks = [status_rank(s) for s in seen]
    assert ranks == sorted(ranks)
    assert OrderStatus.CANCELLED not in seen


async def test_stale_conditional_update_raises_conflict(engine, store, clock):
    order = await _create(engine)
    await engine.advance(order.id, "preparing")

    # A second staff screen still believes the order is pending
    with pytest.raises(ConflictError):
        await store.update_status(order.id, OrderStatus.PENDING, OrderStatus.PREPARING, clock())
    assert (await engine.get(order.id)).status == OrderStatus.PREPARING


# =============================================================================
# CANCEL
# =============================================================================

@pytest.mark.parametrize("steps", [(), ("preparing",), ("preparing", "ready")])
async def test_cancel_active_order(engine, steps):
    order = await _create(engine)
    for status in steps:
        await engine.advance(order.id, status)

    cancelled = await engine.cancel(order.id)
    assert cancelled.status == OrderStatus.CANCELLED

    with pytest.raises(InvalidTransitionError):
        await engine.advance(order.id, "preparing")


async def test_cancel_terminal_order_rejected(engine):
    order = await _create(engine)
    await engine.cancel(order.id)
    with pytest.raises(InvalidTransitionError):
        await engine.cancel(order.id)


async def test_cancel_unknown_order(engine):
    with pytest.raises(NotFoundError):
        await engine.cancel(404)


# =============================================================================
# QUERIES
# =============================================================================

async def test_query_newest_first_with_filters(engine):
    first = await _create(engine, owner_id="user-1")
    second = await _create(engine, "bitbites", lines=(BURGER_X1,), owner_id="user-2")
    third = await _create(engine, owner_id="user-1")
    await engine.advance(third.id, "preparing")

    assert [o.id for o in await engine.query()] == [third.id, second.id, first.id]
    assert [o.id for o in await engine.query(OrderFilter(location=Site.MEDICAL))] == [third.id, first.id]
    assert [o.id for o in await engine.query(OrderFilter(owner_id="user-2"))] == [second.id]
    assert [o.id for o in await engine.query(OrderFilter(statuses=(OrderStatus.PENDING,)))] == [second.id, first.id]
    assert [o.id for o in await engine.query(OrderFilter(limit=1))] == [third.id]


async def test_query_equal_timestamps_keep_insertion_order(store):
    fixed = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    engine = OrderLifecycleEngine(store, clock=lambda: fixed)
    ids = [(await _create(engine)).id for _ in range(3)]

    assert [o.id for o in await engine.query()] == ids


async def test_find_by_token_is_case_insensitive(store):
    engine = OrderLifecycleEngine(store, rng=ScriptedRandom(321))
    order = await _create(engine)

    assert (await engine.find_by_token(" med-321 ")).id == order.id
    assert (await engine.find_by_token("MED-321", "medical")).id == order.id
    with pytest.raises(NotFoundError):
        await engine.find_by_token("MED-321", "bitbites")


async def test_get_returns_copy(engine):
    order = await _create(engine)
    order.status = OrderStatus.COMPLETED
    assert (await engine.get(order.id)).status == OrderStatus.PENDING


# =============================================================================
# CHANGE NOTIFICATIONS
# =============================================================================

async def test_writes_signal_matching_subscribers(engine, feed):
    async with feed.subscribe(OrderPredicate(location=Site.MEDICAL)) as med, \
            feed.subscribe(OrderPredicate(location=Site.BITBITES)) as bit:
        order = await _create(engine)
        event = await med.wait(timeout=1)
        assert (event.kind, event.order_id, event.status) == ("created", order.id, OrderStatus.PENDING)

        await engine.advance(order.id, "preparing")
        event = await med.wait(timeout=1)
        assert (event.kind, event.status) == ("updated", OrderStatus.PREPARING)

        assert await bit.wait(timeout=0.05) is None


async def test_rejected_transition_publishes_nothing(engine, feed):
    order = await _create(engine)
    async with feed.subscribe(OrderPredicate()) as sub:
        with pytest.raises(InvalidTransitionError):
            await engine.advance(order.id, "completed")
        assert await sub.wait(timeout=0.05) is None


class BrokenFeed(InMemoryChangeFeed):
    async def publish(self, event):
        raise ConnectionError("broker down")


async def test_feed_failure_does_not_fail_the_write(store):
    engine = OrderLifecycleEngine(store, BrokenFeed())
    order = await _create(engine)
    updated = await engine.advance(order.id, "preparing")
    assert updated.status == OrderStatus.PREPARING
