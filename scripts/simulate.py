"""
Lunch Rush Simulation Script

Fires many concurrent orders (and some cancellations) at a running API to
check that the debt ledger stays consistent under load.
Run from project root: python scripts/simulate.py

Requires the API in development mode (or any mode with the admin code).
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Configuration
API_BASE_URL = "http://localhost:8001"
ADMIN_CODE = "8888"
TOTAL_ORDERS = 50

USER_NAMES = ["Alice", "Bob", "Carol", "Dave", "Erin", "Frank", "Grace", "Heidi"]
MENU_ITEMS = [
    {"name": "Fried Rice", "price": 90},
    {"name": "Beef Noodle Soup", "price": 150},
    {"name": "Dumplings (10)", "price": 80},
    {"name": "Hot and Sour Soup", "price": 40},
    {"name": "Braised Pork Rice", "price": 75},
]
NOTES = ["", "", "less spicy", "no onions", "extra egg"]

ADMIN_HEADERS = {"X-User-Name": "Simulator", "X-Admin-Code": ADMIN_CODE}


# =============================================================================
# SETUP
# =============================================================================

async def prepare_menu(client: httpx.AsyncClient) -> list[dict[str, Any]]:
    """Reset today's items to the simulation menu and open ordering."""
    response = await client.get(f"{API_BASE_URL}/api/menu")
    response.raise_for_status()
    for item in response.json()["items"]:
        await client.delete(f"{API_BASE_URL}/api/menu/items/{item['id']}", headers=ADMIN_HEADERS)

    await client.put(
        f"{API_BASE_URL}/api/menu/deadline",
        json={"order_deadline": None},
        headers=ADMIN_HEADERS,
    )

    items = []
    for item in MENU_ITEMS:
        response = await client.post(
            f"{API_BASE_URL}/api/menu/items", json=item, headers=ADMIN_HEADERS
        )
        response.raise_for_status()
        items.append(response.json())
    return items


async def login_users(client: httpx.AsyncClient) -> dict[str, int]:
    """Log everyone in; returns the starting balance per user."""
    balances = {}
    for name in USER_NAMES:
        response = await client.post(f"{API_BASE_URL}/api/session", json={"name": name})
        response.raise_for_status()
        user = response.json()["user"]
        balances[user["name"]] = user["balance"]
    return balances


# =============================================================================
# LOAD
# =============================================================================

async def send_order(
    client: httpx.AsyncClient,
    order_num: int,
    items: list[dict[str, Any]],
) -> dict[str, Any]:
    user = random.choice(USER_NAMES)
    item = random.choice(items)
    payload = {
        "item_id": item["id"],
        "quantity": random.randint(1, 3),
        "note": random.choice(NOTES),
    }
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json=payload,
            headers={"X-User-Name": user},
            timeout=30.0,
        )
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "user": user,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }

    elapsed = round(time.time() - start_time, 3)
    if response.status_code == 201:
        data = response.json()
        return {
            "order_num": order_num,
            "success": True,
            "user": user,
            "order_id": data["id"],
            "price": data["price"],
            "time": elapsed,
        }
    return {
        "order_num": order_num,
        "success": False,
        "user": user,
        "error": response.text[:100],
        "time": elapsed,
    }


async def cancel_order(client: httpx.AsyncClient, result: dict[str, Any]) -> bool:
    response = await client.delete(
        f"{API_BASE_URL}/api/orders/{result['order_id']}",
        headers={"X-User-Name": result["user"]},
        timeout=30.0,
    )
    return response.status_code == 200


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS, cancel_ratio: float = 0.2) -> bool:
    """
    Run the lunch rush and compare expected and actual balance changes.

    Returns:
        True when every user's balance moved by exactly the sum of their
        surviving orders
    """
    print("=" * 70)
    print("LUNCH RUSH SIMULATION")
    print("=" * 70)
    print(f"Orders: {num_orders}   Cancel ratio: {cancel_ratio}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        items = await prepare_menu(client)
        before = await login_users(client)

        start_time = time.time()
        results = await asyncio.gather(
            *[send_order(client, i + 1, items) for i in range(num_orders)]
        )
        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        to_cancel = random.sample(successful, int(len(successful) * cancel_ratio))
        cancelled_flags = await asyncio.gather(*[cancel_order(client, r) for r in to_cancel])
        cancelled_ids = {r["order_id"] for r, ok in zip(to_cancel, cancelled_flags) if ok}
        total_time = round(time.time() - start_time, 2)

        response = await client.get(f"{API_BASE_URL}/api/users")
        response.raise_for_status()
        after = {u["name"]: u["balance"] for u in response.json()["users"]}

    expected = {name: 0 for name in before}
    for r in successful:
        if r["order_id"] not in cancelled_ids:
            expected[r["user"]] += r["price"]

    print(f"\nSuccessful orders: {len(successful)}/{num_orders}")
    print(f"Failed orders: {len(failed)}/{num_orders}")
    print(f"Cancelled: {len(cancelled_ids)}/{len(to_cancel)}")
    print(f"Total time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"Average response: {avg_time}s")

    if failed:
        print("\nFailed order details (first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']} ({f['user']}): {f['error']}")

    print("\nBalance check:")
    consistent = True
    for name in USER_NAMES:
        delta = after.get(name, 0) - before.get(name, 0)
        status = "OK" if delta == expected[name] else "MISMATCH"
        consistent = consistent and delta == expected[name]
        print(f"   {name:<10} expected +{expected[name]:<6} actual +{delta:<6} {status}")

    print("\n" + "=" * 70)
    print("LEDGER CONSISTENT" if consistent else "LEDGER MISMATCH")
    print("=" * 70)
    return consistent


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Lunch Rush Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--cancel-ratio", type=float, default=0.2, help="Share of orders to cancel")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    ok = asyncio.run(run_simulation(args.orders, args.cancel_ratio))
    sys.exit(0 if ok else 1)
