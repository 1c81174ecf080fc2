"""
Concurrency Simulation Script

Exercises the staff guards of a running server:
    - N staff devices pressing "ready"/"picked up" on the same order at once
      (exactly one must win, the rest must get 409 Conflict)
    - A burst of wrong PINs from one address (must end in 429 lockout)

Run from project root: python scripts/simulate.py --order-id 42 --pin 1234

Author: Khalil_Bannouri
Version: 3.0.0
"""

import asyncio
import argparse
import sys
import time
from collections import Counter
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

API_BASE_URL = "http://localhost:8001"


async def staff_login(client: httpx.AsyncClient, pin: str) -> bool:
    """Log the shared client in; the session cookie lands in its jar."""
    response = await client.post(f"{API_BASE_URL}/api/staff/auth/pin", json={"pin": pin})
    return response.status_code == 200


async def send_status_update(
    client: httpx.AsyncClient,
    device: int,
    order_id: int,
    new_status: str,
) -> dict[str, Any]:
    """One staff device pressing the status button."""
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/staff/orders/update-status",
            json={"orderId": order_id, "newStatus": new_status},
            timeout=30.0,
        )
        return {
            "device": device,
            "status_code": response.status_code,
            "body": response.text[:100],
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {
            "device": device,
            "status_code": None,
            "body": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def run_status_race(pin: str, order_id: int, new_status: str, devices: int) -> bool:
    """Fire ``devices`` identical updates concurrently and check the outcome."""
    print("=" * 70)
    print(f"🔥 STATUS RACE - {devices} devices -> order #{order_id} -> {new_status}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        if not await staff_login(client, pin):
            print("❌ Staff login failed")
            return False

        tasks = [send_status_update(client, i + 1, order_id, new_status) for i in range(devices)]
        results = await asyncio.gather(*tasks)

    codes = Counter(r["status_code"] for r in results)
    for r in results:
        print(f"   Device {r['device']:>2}: {r['status_code']} in {r['time']}s {r['body']}")

    print(f"\n📊 Outcomes: {dict(codes)}")
    ok = codes.get(200, 0) <= 1 and codes.get(200, 0) + codes.get(409, 0) + codes.get(400, 0) == devices
    print("✅ At most one update applied" if ok else "❌ Unexpected outcome")
    return ok


async def run_pin_burst(attempts: int) -> bool:
    """Send wrong PINs until the limiter locks this address out."""
    print("\n" + "=" * 70)
    print(f"🔐 PIN BURST - {attempts} wrong PINs")
    print("=" * 70)

    locked = False
    async with httpx.AsyncClient() as client:
        for i in range(attempts):
            response = await client.post(
                f"{API_BASE_URL}/api/staff/auth/pin",
                json={"pin": "wrong-pin"},
                headers={"X-Forwarded-For": "203.0.113.77"},
            )
            print(f"   Attempt {i + 1}: {response.status_code}")
            if response.status_code == 429:
                print(f"   Retry-After: {response.headers.get('retry-after')}s")
                locked = True
                break

    print("✅ Lockout engaged" if locked else "❌ No lockout")
    return locked


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrency Simulation Script")
    parser.add_argument("--order-id", type=int, required=True, help="Order to race on")
    parser.add_argument("--status", default="ready", choices=["ready", "picked_up"])
    parser.add_argument("--pin", required=True, help="Staff PIN")
    parser.add_argument("--devices", type=int, default=10, help="Concurrent staff devices")
    parser.add_argument("--burst", type=int, default=8, help="Wrong PIN attempts")
    args = parser.parse_args()

    race_ok = asyncio.run(run_status_race(args.pin, args.order_id, args.status, args.devices))
    burst_ok = asyncio.run(run_pin_burst(args.burst))
    sys.exit(0 if race_ok and burst_ok else 1)
