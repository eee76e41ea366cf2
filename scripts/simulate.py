"""
Order Flow Simulation Script

Places a batch of concurrent orders, then walks each one through the
kitchen lifecycle (pending → preparing → ready → collected) the way the
staff dashboard does, and checks the tracking endpoint along the way.

Run from project root with the API up:
    ADMIN_TOKEN=... python scripts/simulate.py --orders 20

Each simulated customer sends its own X-Client-Id so the per-client
order rate limit does not trip.
"""

import argparse
import asyncio
import os
import random
import sys
import time
import uuid
from datetime import datetime
from typing import Any, Optional

import httpx

# Configuration
API_BASE_URL = os.environ.get("API_BASE_URL", "http://localhost:8001")
ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "")
TOTAL_ORDERS = 20

FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
MENU_ITEMS = [
    {"name": "Montana BBQ Hamburger Regular", "price": 280, "variants": ["Beef", "Chicken"]},
    {"name": "Montana BBQ Hamburger Large", "price": 340, "variants": ["Beef", "Chicken"]},
    {"name": "Crispy Wrap Regular", "price": 190, "variants": ["Chicken", "Falafel"]},
    {"name": "Fries Large", "price": 90, "variants": []},
    {"name": "Milkshake", "price": 120, "variants": []},
]
KITCHEN_STEPS = ["preparing", "ready", "collected"]


def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


def generate_basket() -> dict[str, Any]:
    """Random basket with a total that matches its lines."""
    items = []
    for _ in range(random.randint(1, 4)):
        menu_item = random.choice(MENU_ITEMS)
        items.append({
            "name": menu_item["name"],
            "price": menu_item["price"],
            "variant": random.choice(menu_item["variants"]) if menu_item["variants"] else None,
            "quantity": random.randint(1, 3),
        })

    total = round(sum(item["price"] * item["quantity"] for item in items), 2)
    return {
        "items": items,
        "customerInfo": {
            "name": random.choice(FIRST_NAMES),
            "phone": f"555-{random.randint(100, 999)}-{random.randint(1000, 9999)}",
        },
        "totalAmount": total,
    }


# =============================================================================
# SINGLE ORDER FLOW
# =============================================================================

async def place_order(client: httpx.AsyncClient, order_num: int) -> dict[str, Any]:
    payload = generate_basket()
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json=payload,
            headers={"X-Client-Id": f"sim-{uuid.uuid4().hex[:12]}"},
            timeout=30.0,
        )
    except httpx.HTTPError as e:
        return {"order_num": order_num, "success": False, "error": str(e)[:100]}

    elapsed = round(time.time() - start_time, 3)
    if response.status_code != 200:
        return {
            "order_num": order_num,
            "success": False,
            "error": response.text[:100],
            "time": elapsed,
        }

    order = response.json()["order"]
    return {
        "order_num": order_num,
        "success": True,
        "order_number": order["order_number"],
        "verification_number": order["verification_number"],
        "total": order["total_amount"],
        "time": elapsed,
    }


async def track(client: httpx.AsyncClient, order_number: int, code: int) -> Optional[str]:
    response = await client.get(
        f"{API_BASE_URL}/api/order-tracking",
        params={"order_number": order_number, "verification_number": code},
    )
    if response.status_code != 200:
        return None
    return response.json()["order"]["status"]


async def run_kitchen(client: httpx.AsyncClient, placed: dict[str, Any]) -> dict[str, Any]:
    """Advance one order to completion, checking tracking after each step."""
    order_number = placed["order_number"]
    code = placed["verification_number"]
    seen = []

    for step in KITCHEN_STEPS:
        await asyncio.sleep(random.uniform(0.05, 0.3))
        response = await client.put(
            f"{API_BASE_URL}/api/order-tracking",
            json={"order_id": order_number, "status": step},
            headers=admin_headers(),
        )
        if response.status_code != 200:
            return {"order_number": order_number, "success": False, "error": response.text[:100]}
        seen.append(await track(client, order_number, code))

    # collected is stored as completed
    ok = seen == ["preparing", "ready", "completed"]
    return {"order_number": order_number, "success": ok, "statuses": seen}


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS) -> bool:
    print("=" * 70)
    print("🍔 ORDER FLOW SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"❌ Health check failed: {response.text}")
            return False
        print(f"\n✅ Health: {response.json().get('status')}")

        print("\n🚀 Placing orders...\n")
        placed = await asyncio.gather(*[place_order(client, i + 1) for i in range(num_orders)])
        successful = [r for r in placed if r["success"]]
        failed = [r for r in placed if not r["success"]]

        codes = [r["verification_number"] for r in successful]
        if len(codes) != len(set(codes)):
            print("❌ Duplicate verification numbers among active orders")

        kitchen = []
        if ADMIN_TOKEN:
            print("👨‍🍳 Running kitchen...\n")
            kitchen = await asyncio.gather(*[run_kitchen(client, r) for r in successful])
        else:
            print("⚠️  ADMIN_TOKEN not set, skipping status updates")

    total_time = round(time.time() - start_time, 2)

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Placed: {len(successful)}/{num_orders}")
    print(f"❌ Failed: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        total_revenue = sum(r["total"] for r in successful)
        print(f"\n📈 Average placement: {avg_time}s")
        print(f"   💰 Total Revenue: {total_revenue:.2f}")

    if kitchen:
        completed = [r for r in kitchen if r["success"]]
        print(f"\n🍽️  Completed lifecycle: {len(completed)}/{len(kitchen)}")
        for r in [r for r in kitchen if not r["success"]][:5]:
            print(f"   Order #{r['order_number']}: {r.get('error') or r.get('statuses')}")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    return not failed and all(r["success"] for r in kitchen)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Order Flow Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    args = parser.parse_args()

    ok = asyncio.run(run_simulation(num_orders=args.orders))
    sys.exit(0 if ok else 1)
