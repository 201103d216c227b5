"""
Menu Seed Script

Replaces the menu of both sites with the default catalog.
Run from project root: python scripts/seed.py
"""

import asyncio
import os
import sys

from sqlalchemy import delete

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from quickserve.core.config import setup_logging
from quickserve.database import dispose_engine, get_session_maker, init_db
from quickserve.models import MenuCategory, MenuItem, Site

MEDICAL_CAFETERIA_MENU = [
    ("Healthy Veg Thali", "Nutritious meal with dal, rice, roti, and seasonal vegetables", 120, MenuCategory.FOOD),
    ("Grilled Chicken Salad", "Fresh greens with grilled chicken and light dressing", 150, MenuCategory.FOOD),
    ("Soup of the Day", "Warm, comforting soup with bread roll", 60, MenuCategory.FOOD),
    ("Fresh Fruit Juice", "Seasonal fresh pressed juice", 45, MenuCategory.DRINK),
    ("Green Smoothie", "Spinach, banana, apple and honey blend", 70, MenuCategory.DRINK),
    ("Protein Bar", "Healthy snack bar with nuts and dates", 35, MenuCategory.SNACK),
]

BIT_BITES_MENU = [
    ("Classic Burger", "Juicy beef patty with fresh veggies and special sauce", 149, MenuCategory.FOOD),
    ("Crispy Chicken Wrap", "Crunchy chicken with lettuce and ranch", 129, MenuCategory.FOOD),
    ("Loaded Fries", "Crispy fries with cheese and bacon bits", 99, MenuCategory.SNACK),
    ("Cappuccino", "Rich espresso with steamed milk foam", 79, MenuCategory.DRINK),
    ("Cold Coffee", "Iced coffee blended with cream", 89, MenuCategory.DRINK),
    ("Chocolate Brownie", "Warm fudgy brownie with ice cream", 109, MenuCategory.SNACK),
]


def build_menu() -> list[MenuItem]:
    items = []
    for site, menu in ((Site.MEDICAL, MEDICAL_CAFETERIA_MENU), (Site.BITBITES, BIT_BITES_MENU)):
        for name, description, price, category in menu:
            items.append(MenuItem(
                name=name,
                description=description,
                price=price,
                category=category,
                location=site,
                available=True,
            ))
    return items


async def seed() -> int:
    logger = setup_logging()
    await init_db()

    async with get_session_maker()() as session:
        await session.execute(delete(MenuItem))
        logger.info("Cleared existing menu items")

        items = build_menu()
        session.add_all(items)
        await session.commit()
        logger.info(f"Seeded {len(items)} menu items")

    await dispose_engine()
    return len(items)


if __name__ == "__main__":
    asyncio.run(seed())
