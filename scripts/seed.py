"""
Demo Data Seeder

Creates one restaurant with a roster and a small menu so the simulation
script has something to order from.
Run from project root: python scripts/seed.py

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from dineflow.database import async_session_maker, engine, init_db
from dineflow.models import ActorRole, MenuItem, Restaurant, StaffMember

MENU = [
    ("Bruschetta", "6.50", "Starters", {"is_vegetarian": True}),
    ("Arancini", "7.00", "Starters", {"is_vegetarian": True}),
    ("Pizza Margherita", "14.99", "Mains", {"is_vegetarian": True}),
    ("Pasta Carbonara", "13.99", "Mains", {}),
    ("Penne Arrabbiata", "12.49", "Mains", {"is_spicy": True, "is_vegetarian": True}),
    ("Tiramisu", "7.99", "Desserts", {}),
    ("Sparkling Water", "3.49", "Drinks", {}),
]

ROSTER = [
    ("Chef Marco", "kitchen@example.com", ActorRole.KITCHEN),
    ("Giulia", "floor@example.com", ActorRole.STAFF),
    ("Owner", "admin@example.com", ActorRole.ADMIN),
]


async def seed() -> None:
    await init_db()
    async with async_session_maker() as session:
        restaurant = Restaurant(name="Trattoria Demo", table_count=12)
        session.add(restaurant)
        await session.flush()

        for name, email, role in ROSTER:
            session.add(StaffMember(restaurant_id=restaurant.id, name=name, email=email, role=role))
        for name, price, category, flags in MENU:
            session.add(MenuItem(
                restaurant_id=restaurant.id,
                name=name,
                price=Decimal(price),
                category=category,
                **flags,
            ))
        await session.commit()

        print("=" * 60)
        print(f"Seeded restaurant #{restaurant.id}: {restaurant.name}")
        print(f"   Tables: 1..{restaurant.table_count}")
        print(f"   Menu items: {len(MENU)}")
        print(f"   Roster: {', '.join(f'{n} ({r.value})' for n, _, r in ROSTER)}")
        print("=" * 60)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
