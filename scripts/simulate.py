"""
Chaos Simulation Script

Fires concurrent requests at a running API to check the POS concurrency
guarantees end to end:

    - many servers open an order on the same table -> exactly one wins
    - many cashiers pay the same order -> exactly one payment

Run from project root: python scripts/simulate.py
Seed reference data first with: python scripts/simulate.py --seed
"""

import argparse
import asyncio
import os
import random
import sys
import time
from decimal import Decimal
from typing import Any

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
CONCURRENT_REQUESTS = 20

SEED_TABLES = 10
SEED_PRODUCTS = [
    {"name": "Pizza Margherita", "price": Decimal("14.99")},
    {"name": "Pepperoni Pizza", "price": Decimal("16.99")},
    {"name": "Caesar Salad", "price": Decimal("8.99")},
    {"name": "Tiramisu", "price": Decimal("7.99"), "track_stock": True, "stock_quantity": 25},
    {"name": "Coke", "price": Decimal("2.99"), "track_stock": True, "stock_quantity": 100},
]
SEED_PAYMENT_METHODS = ["cash", "card"]


def actor_headers(actor_id: int, role: str) -> dict[str, str]:
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


# =============================================================================
# SEEDING
# =============================================================================

async def seed_database() -> None:
    """Create tables, products and payment methods directly in the store."""
    from sqlalchemy import func, select

    from pos_core.database import get_engine, get_session_maker, init_db
    from pos_core.models import PaymentMethod, Product, RestaurantTable

    await init_db()
    async with get_session_maker()() as session:
        async with session.begin():
            existing = (await session.execute(select(func.count(RestaurantTable.id)))).scalar() or 0
            if existing:
                print(f"ℹ️  Store already seeded ({existing} tables)")
                return
            for number in range(1, SEED_TABLES + 1):
                session.add(RestaurantTable(table_number=number, capacity=4))
            for data in SEED_PRODUCTS:
                session.add(Product(**data))
            for name in SEED_PAYMENT_METHODS:
                session.add(PaymentMethod(name=name))
    await get_engine().dispose()
    print(f"✅ Seeded {SEED_TABLES} tables, {len(SEED_PRODUCTS)} products, "
          f"{len(SEED_PAYMENT_METHODS)} payment methods")


# =============================================================================
# CONTENTION SCENARIOS
# =============================================================================

async def open_order(client: httpx.AsyncClient, server_id: int, table_id: int) -> dict[str, Any]:
    """One server tries to open an order on ``table_id``."""
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json={"table_id": table_id, "guest_count": random.randint(1, 4)},
            headers=actor_headers(server_id, "server"),
            timeout=30.0,
        )
        return {
            "actor": server_id,
            "status": response.status_code,
            "body": response.json(),
            "time": round(time.time() - start_time, 3),
        }
    except Exception as e:
        return {
            "actor": server_id,
            "status": None,
            "body": {"error": str(e)[:100]},
            "time": round(time.time() - start_time, 3),
        }


async def table_contention(client: httpx.AsyncClient, table_id: int, n: int) -> dict[str, Any] | None:
    """Race ``n`` servers for one table. Returns the winning order."""
    print(f"\n🪑 {n} servers racing for table #{table_id}...")
    results = await asyncio.gather(*[
        open_order(client, server_id, table_id) for server_id in range(100, 100 + n)
    ])

    winners = [r for r in results if r["status"] == 201]
    conflicts = [r for r in results if r["status"] == 409]
    others = [r for r in results if r["status"] not in (201, 409)]

    print(f"   Winners: {len(winners)} | Conflicts: {len(conflicts)} | Other: {len(others)}")
    for r in others[:5]:
        print(f"   ⚠️ actor {r['actor']}: {r['status']} {r['body']}")

    if len(winners) == 1:
        print(f"   ✅ Exactly one order opened: {winners[0]['body']['order_number']}")
        return winners[0]
    print("   ❌ Expected exactly one winner")
    return None


async def payment_contention(client: httpx.AsyncClient, order: dict[str, Any], n: int) -> bool:
    """Add an item, then race ``n`` cashiers to settle the order."""
    order_id = order["body"]["id"]
    server_id = order["actor"]

    response = await client.post(
        f"{API_BASE_URL}/api/orders/{order_id}/items",
        json={"product_id": 1, "quantity": 2},
        headers=actor_headers(server_id, "server"),
    )
    if response.status_code != 201:
        print(f"   ❌ Could not add item: {response.text[:100]}")
        return False
    total = Decimal(response.json()["order"]["total_amount"])

    print(f"\n💳 {n} cashiers racing to pay order #{order_id} (total {total})...")
    responses = await asyncio.gather(*[
        client.post(
            f"{API_BASE_URL}/api/payments",
            json={
                "order_id": order_id,
                "payment_method_id": 1,
                "amount_paid": str(total + Decimal("5.00")),
            },
            headers=actor_headers(cashier_id, "cashier"),
            timeout=30.0,
        )
        for cashier_id in range(500, 500 + n)
    ], return_exceptions=True)

    statuses = [r.status_code if isinstance(r, httpx.Response) else None for r in responses]
    paid = statuses.count(201)
    print(f"   Paid: {paid} | Rejected: {len(statuses) - paid}")

    detail = await client.get(
        f"{API_BASE_URL}/api/orders/{order_id}",
        headers=actor_headers(server_id, "server"),
    )
    payment = detail.json().get("payment")
    if paid == 1 and payment is not None:
        print(f"   ✅ Single payment {payment['payment_number']}, change {payment['change_amount']}")
        return True
    print("   ❌ Expected exactly one payment")
    return False


async def run_simulation(n: int, table_id: int) -> bool:
    print("\n" + "=" * 70)
    print("🔥 CONCURRENCY SIMULATION")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"❌ Health check failed: {response.text}")
            return False
        data = response.json()
        print(f"✅ Status: {data.get('status')} | Database: {data.get('database')} "
              f"| Audit: {data.get('audit_sink')}")

        start_time = time.time()
        winner = await table_contention(client, table_id, n)
        ok = winner is not None and await payment_contention(client, winner, n)

    print("\n" + "=" * 70)
    print(f"⏱️  Total Time: {round(time.time() - start_time, 3)}s")
    print("✅ SIMULATION PASSED" if ok else "❌ SIMULATION FAILED")
    print("Run: python scripts/verify.py to inspect the audit workbook")
    print("=" * 70)
    return ok


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--seed", action="store_true", help="Seed reference data and exit")
    parser.add_argument("--concurrency", type=int, default=CONCURRENT_REQUESTS,
                        help="Concurrent requests per scenario")
    parser.add_argument("--table", type=int, default=1, help="Table to race for")
    args = parser.parse_args()

    if args.seed:
        asyncio.run(seed_database())
        sys.exit(0)

    sys.exit(0 if asyncio.run(run_simulation(args.concurrency, args.table)) else 1)
