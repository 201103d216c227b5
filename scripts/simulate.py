"""
Rush-Hour Simulation Script

Simulates a lunch rush against a running server: customers check out
random carts at both sites while staff boards advance every order to
completion. Reports checkout outcomes, total mismatches, rejected
advances and timings.
Run from project root: python scripts/simulate.py
"""

import argparse
import asyncio
import os
import random
import sys
import time
from typing import Any

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from quickserve.client import Cart, OrderBoard, QuickServeClient
from quickserve.core.config import get_logger, setup_logging
from quickserve.core.exceptions import QuickServeError
from quickserve.models import OrderStatus, Site

# Configuration
API_BASE_URL = "http://localhost:5000"
TOTAL_ORDERS = 30

FIRST_NAMES = ["Asha", "Rahul", "Priya", "Vikram", "Neha", "Arjun", "Kavya", "Rohan", "Meera", "Ishaan"]

logger = get_logger("simulate")


# =============================================================================
# CUSTOMERS
# =============================================================================

async def place_order(
    client: QuickServeClient,
    menus: dict[Site, list],
    order_num: int,
) -> dict[str, Any]:
    """Fill a random cart at a random site and check it out."""
    site = random.choice(list(Site))
    cart = Cart()
    cart.select_location(site)
    for item in random.sample(menus[site], k=random.randint(1, min(3, len(menus[site])))):
        for _ in range(random.randint(1, 3)):
            cart.add_item(item)

    expected_total = cart.total
    start_time = time.time()
    try:
        order = await client.checkout(
            cart,
            client_name=random.choice(FIRST_NAMES),
            table_number=random.choice([None, f"T-{random.randint(1, 20)}"]),
        )
        return {
            "order_num": order_num,
            "success": True,
            "order_id": order.id,
            "token": order.token,
            "total_ok": order.total == expected_total,
            "time": round(time.time() - start_time, 3),
        }
    except QuickServeError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": e.message[:100],
            "cart_kept": not cart.is_empty,
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# STAFF
# =============================================================================

async def run_staff(
    client: QuickServeClient,
    site: Site,
    stop: asyncio.Event,
    interval: float,
) -> dict[str, int]:
    """Advance every active order at a site one step per pass."""
    board = OrderBoard(
        client,
        location=site,
        statuses=(OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY),
    )
    stats = {"advanced": 0, "rejected": 0}

    async with board.watch_pull(interval):
        while not stop.is_set() or board.orders:
            for order in board.orders:
                try:
                    await board.advance(order.id)
                    stats["advanced"] += 1
                except QuickServeError as e:
                    stats["rejected"] += 1
                    logger.warning(f"{site.value}: order #{order.id} not advanced ({e.error_code})")
                await asyncio.sleep(random.uniform(0.05, 0.2))
            await asyncio.sleep(interval)
            await board.refresh()

    return stats


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int, interval: float) -> dict[str, Any]:
    async with QuickServeClient(API_BASE_URL, timeout=30.0) as client:
        menus = {site: await client.list_menu(site) for site in Site}
        empty = [site.value for site, menu in menus.items() if not menu]
        if empty:
            raise SystemExit(f"No menu for {empty}. Run: python scripts/seed.py")

        stop = asyncio.Event()
        staff = [
            asyncio.create_task(run_staff(client, site, stop, interval))
            for site in Site
        ]

        start = time.time()
        results = await asyncio.gather(*[
            place_order(client, menus, n) for n in range(1, num_orders + 1)
        ])
        stop.set()
        staff_stats = await asyncio.gather(*staff)
        elapsed = round(time.time() - start, 2)

        completed = await client.list_orders(status=[OrderStatus.COMPLETED], limit=500)

    succeeded = [r for r in results if r["success"]]
    return {
        "orders": num_orders,
        "succeeded": len(succeeded),
        "failed": num_orders - len(succeeded),
        "total_mismatches": sum(1 for r in succeeded if not r["total_ok"]),
        "advanced": sum(s["advanced"] for s in staff_stats),
        "rejected": sum(s["rejected"] for s in staff_stats),
        "completed_on_server": len(completed),
        "avg_checkout_time": round(sum(r["time"] for r in results) / num_orders, 3),
        "elapsed": elapsed,
    }


def print_report(report: dict[str, Any]) -> None:
    print("=" * 60)
    print("RUSH-HOUR SIMULATION REPORT")
    print("=" * 60)
    for key, value in report.items():
        print(f"   {key.replace('_', ' ').title():<22} {value}")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Simulate customers and staff")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS)
    parser.add_argument("--interval", type=float, default=1.0, help="staff poll interval (s)")
    parser.add_argument("--url", default=API_BASE_URL)
    args = parser.parse_args()

    API_BASE_URL = args.url
    setup_logging()
    print_report(asyncio.run(run_simulation(args.orders, args.interval)))
