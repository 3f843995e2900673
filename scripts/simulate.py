"""
Lifecycle Simulation Script

Drives concurrent table orders through the whole lifecycle against a running
server, then fires paired serve/cancel races on the same orders to show that
exactly one side of each pair wins.
Run from project root: python scripts/seed.py && python scripts/simulate.py

Author: Khalil_Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import os
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 20

NOTES = [None, "no onions", "extra cheese", "sauce on the side", "well done"]

LIFECYCLE = [
    ("IN_PROGRESS", "KITCHEN"),
    ("READY_FOR_PICKUP", "KITCHEN"),
    ("SERVED", "STAFF"),
]


async def fetch_menu(client: httpx.AsyncClient, restaurant_id: int) -> list[dict]:
    response = await client.get("/menu", params={"restaurantId": restaurant_id, "tableId": "1"})
    response.raise_for_status()
    return response.json()["menu"]


def generate_lines(menu: list[dict]) -> list[dict]:
    """Random cart of 1-4 lines."""
    return [
        {
            "menuItemId": item["id"],
            "quantity": random.randint(1, 3),
            "price": item["price"],
            "note": random.choice(NOTES),
        }
        for item in random.sample(menu, k=min(len(menu), random.randint(1, 4)))
    ]


async def place_and_pay(
    client: httpx.AsyncClient,
    restaurant_id: int,
    table_count: int,
    menu: list[dict],
) -> dict:
    response = await client.post("/orders", json={
        "restaurantId": restaurant_id,
        "tableId": str(random.randint(1, table_count)),
        "lines": generate_lines(menu),
    })
    response.raise_for_status()
    order = response.json()

    response = await client.post(f"/orders/{order['id']}/payment", json={})
    response.raise_for_status()
    return response.json()["order"]


# =============================================================================
# FULL LIFECYCLE
# =============================================================================

async def run_lifecycle(
    client: httpx.AsyncClient,
    order_num: int,
    restaurant_id: int,
    table_count: int,
    menu: list[dict],
) -> dict[str, Any]:
    """Create, pay, cook, ready, serve."""
    start_time = time.time()
    try:
        order = await place_and_pay(client, restaurant_id, table_count, menu)
        for status, role in LIFECYCLE:
            await asyncio.sleep(random.uniform(0, 0.2))
            response = await client.patch(f"/orders/{order['id']}/status", json={
                "status": status,
                "actorRestaurantId": restaurant_id,
                "actorRole": role,
            })
            if response.status_code != 200:
                return {
                    "order_num": order_num,
                    "success": False,
                    "error": f"{status}: {response.text[:100]}",
                    "time": round(time.time() - start_time, 3),
                }
        return {
            "order_num": order_num,
            "success": True,
            "order_id": order["id"],
            "total": order["totalAmount"],
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# SERVE / CANCEL RACES
# =============================================================================

async def run_race(
    client: httpx.AsyncClient,
    restaurant_id: int,
    table_count: int,
    menu: list[dict],
) -> dict[str, Any]:
    """Bring an order to READY_FOR_PICKUP, then serve and cancel it at once."""
    order = await place_and_pay(client, restaurant_id, table_count, menu)
    for status, role in LIFECYCLE[:2]:
        response = await client.patch(f"/orders/{order['id']}/status", json={
            "status": status,
            "actorRestaurantId": restaurant_id,
            "actorRole": role,
        })
        response.raise_for_status()

    serve, cancel = await asyncio.gather(
        client.patch(f"/orders/{order['id']}/status", json={
            "status": "SERVED",
            "actorRestaurantId": restaurant_id,
            "actorRole": "STAFF",
        }),
        client.patch(f"/orders/{order['id']}/status", json={
            "status": "CANCELLED",
            "actorRestaurantId": restaurant_id,
            "actorRole": "STAFF",
            "expectedStatus": "READY_FOR_PICKUP",
        }),
    )
    final = (await client.get(f"/orders/{order['id']}")).json()["status"]
    winners = [r for r in (serve, cancel) if r.status_code == 200]
    conflicts = [r for r in (serve, cancel) if r.status_code == 409]
    return {
        "order_id": order["id"],
        "serve": serve.status_code,
        "cancel": cancel.status_code,
        "final": final,
        "consistent": len(winners) == 1 and len(conflicts) == 1,
    }


async def run_simulation(
    restaurant_id: int,
    num_orders: int,
    num_races: int,
    table_count: int,
) -> dict:
    print("=" * 70)
    print("LIFECYCLE SIMULATION")
    print(f"   Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"   Server: {API_BASE_URL}  Restaurant: #{restaurant_id}")
    print(f"   Orders: {num_orders}  Races: {num_races}")
    print("=" * 70)

    start = time.time()
    async with httpx.AsyncClient(base_url=API_BASE_URL, timeout=30.0) as client:
        menu = await fetch_menu(client, restaurant_id)
        if not menu:
            print("No orderable items. Run scripts/seed.py first.")
            return {"total": 0}

        results = await asyncio.gather(*[
            run_lifecycle(client, n, restaurant_id, table_count, menu)
            for n in range(1, num_orders + 1)
        ])
        races = await asyncio.gather(*[
            run_race(client, restaurant_id, table_count, menu)
            for _ in range(num_races)
        ])

        kitchen = (await client.get(
            "/orders", params={"restaurantId": restaurant_id, "view": "kitchen"}
        )).json()

    total_time = round(time.time() - start, 2)
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    consistent = [r for r in races if r["consistent"]]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"Total Time: {total_time}s")
    print(f"\nLifecycles: {len(successful)}/{len(results)} reached SERVED")
    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        total_revenue = sum(r.get("total", 0) for r in successful)
        print(f"   Average lifecycle: {avg_time}s")
        print(f"   Total Revenue: ${total_revenue:.2f}")
    if failed:
        print("\nFailed lifecycles (first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print(f"\nServe/cancel races: {len(consistent)}/{len(races)} with exactly one winner")
    for race in races:
        print(
            f"   Order #{race['order_id']}: serve={race['serve']} "
            f"cancel={race['cancel']} final={race['final']}"
        )
    print(f"\nKitchen slice now holds {kitchen.get('total', 0)} orders")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "races_consistent": len(consistent),
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Lifecycle Simulation Script")
    parser.add_argument("--restaurant", type=int, default=1, help="Restaurant id")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of lifecycles")
    parser.add_argument("--tables", type=int, default=12, help="Tables to spread orders over")
    parser.add_argument("--races", type=int, default=5, help="Number of serve/cancel races")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    asyncio.run(run_simulation(args.restaurant, args.orders, args.races, args.tables))
