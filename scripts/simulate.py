"""
Notify Flow Simulation Script

Exercises a running server end to end: token issue, order submission,
replay attempt and a rate-limit burst.
Run from project root: python scripts/simulate.py --location table-1

Version: 1.0.0
"""

import asyncio
import sys
import random
import time
import argparse
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
NOTIFY_URL = f"{API_BASE_URL}/api/notify"
TOTAL_GUESTS = 2

MENU_ITEMS = [
    "Pizza Margherita",
    "Pepperoni Pizza",
    "Caesar Salad",
    "Garlic Bread",
    "Pasta Carbonara",
    "Tiramisu",
    "Sparkling Water",
]


def browser_headers() -> dict[str, str]:
    """Headers a same-origin browser fetch would carry."""
    return {
        "Origin": API_BASE_URL,
        "Sec-Fetch-Site": "same-origin",
        "Sec-Fetch-Mode": "cors",
    }


def generate_order_text() -> tuple[str, str]:
    """Random order title and message."""
    lines = [f"{random.randint(1, 3)}x {item}" for item in random.sample(MENU_ITEMS, random.randint(1, 4))]
    return "New table order", "\n".join(lines)


# =============================================================================
# GUEST FLOW
# =============================================================================

async def request_token(client: httpx.AsyncClient, location: str) -> httpx.Response:
    return await client.get(
        NOTIFY_URL,
        params={"locationToken": location},
        headers=browser_headers(),
        timeout=30.0,
    )


async def submit_order(
    client: httpx.AsyncClient,
    location: str,
    auth_token: str,
) -> httpx.Response:
    title, message = generate_order_text()
    return await client.post(
        NOTIFY_URL,
        json={
            "title": title,
            "message": message,
            "locationToken": location,
            "authToken": auth_token,
        },
        headers=browser_headers(),
        timeout=30.0,
    )


async def run_guest(guest_num: int, location: str) -> dict[str, Any]:
    """One guest: issue a token, submit once, then try to replay it."""
    start_time = time.time()

    # Each guest has its own cookie jar
    async with httpx.AsyncClient() as client:
        try:
            issued = await request_token(client, location)
            if issued.status_code != 200:
                return {
                    "guest_num": guest_num,
                    "success": False,
                    "error": f"issue {issued.status_code}: {issued.text[:100]}",
                    "time": round(time.time() - start_time, 3),
                }

            auth_token = issued.json()["authToken"]
            submitted = await submit_order(client, location, auth_token)
            replayed = await submit_order(client, location, auth_token)

            return {
                "guest_num": guest_num,
                "success": submitted.status_code == 200,
                "status": submitted.status_code,
                "replay_status": replayed.status_code,
                "error": None if submitted.status_code == 200 else submitted.text[:100],
                "time": round(time.time() - start_time, 3),
            }
        except httpx.HTTPError as e:
            return {
                "guest_num": guest_num,
                "success": False,
                "error": str(e)[:100],
                "time": round(time.time() - start_time, 3),
            }


async def run_rate_burst(location: str, requests: int) -> dict[int, int]:
    """Fire token requests from one client and count status codes."""
    counts: dict[int, int] = {}
    async with httpx.AsyncClient() as client:
        responses = await asyncio.gather(
            *[request_token(client, location) for _ in range(requests)],
            return_exceptions=True,
        )
    for response in responses:
        if isinstance(response, httpx.Response):
            counts[response.status_code] = counts.get(response.status_code, 0) + 1
    return counts


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(location: str, num_guests: int = TOTAL_GUESTS, burst: int = 20) -> dict[str, Any]:
    """
    Run the notify simulation.

    Args:
        location: locationToken known to the server
        num_guests: Number of concurrent guests
        burst: Token requests fired in the rate-limit burst
    """
    print("=" * 70)
    print("🔔 NOTIFY FLOW SIMULATION")
    print("=" * 70)
    print(f"📋 Guests: {num_guests}")
    print(f"🎯 Target: {NOTIFY_URL}")
    print(f"📍 Location: {location}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   ❌ Health check failed: {response.text}")
            return {"total": num_guests, "successful": 0}
        data = response.json()
        print(f"\n🩺 Health: {data.get('status')} "
              f"(notifier={data.get('notification_service')}, locations={data.get('location_mode')})")

    start_time = time.time()
    print("\n🚀 Running guests...\n")
    results = await asyncio.gather(*[run_guest(i + 1, location) for i in range(num_guests)])
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    replays_blocked = [r for r in successful if r.get("replay_status") == 409]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Delivered: {len(successful)}/{num_guests}")
    print(f"❌ Failed: {len(failed)}/{num_guests}")
    print(f"🔁 Replays blocked: {len(replays_blocked)}/{len(successful)}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"\n📈 Average guest flow: {avg_time}s")

    if failed:
        print(f"\n⚠️  Failed Guest Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Guest #{f['guest_num']}: {f.get('error', 'Unknown error')}")

    if burst:
        print(f"\n🌊 Rate-limit burst ({burst} token requests)...")
        counts = await run_rate_burst(location, burst)
        for status, count in sorted(counts.items()):
            print(f"   HTTP {status}: {count}")

    print("=" * 70)

    return {
        "total": num_guests,
        "successful": len(successful),
        "failed": len(failed),
        "replays_blocked": len(replays_blocked),
        "total_time": total_time,
        "results": results,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Simulate guests using the notify endpoint")
    parser.add_argument("--location", required=True, help="locationToken configured on the server")
    parser.add_argument("--guests", type=int, default=TOTAL_GUESTS, help="Number of concurrent guests")
    parser.add_argument("--burst", type=int, default=20, help="Token requests in the rate-limit burst (0 to skip)")
    args = parser.parse_args()

    asyncio.run(run_simulation(args.location, args.guests, args.burst))


if __name__ == "__main__":
    main()
