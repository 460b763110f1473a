#!/usr/bin/env python3
"""
authcore Quickstart — the whole session lifecycle in one script.

Register → check-status → refresh (rotation) → replay the old refresh
token (rejected) → logout → refresh after logout (rejected).
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:8000
  (e.g. AUTHCORE_STORE_BACKEND=memory authcore serve)
"""

import sys
import uuid

import httpx

BASE = "http://localhost:8000/api/v1"


def main():
    run_id = uuid.uuid4().hex[:6]
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Health check ──────────────────────────────────────────────
    print("Checking backend health...")
    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        print(f"Backend not reachable at {BASE}")
        sys.exit(1)
    health = resp.json()
    print(f"  Store ({health['store_backend']}): {'✓' if health['store'] == 'ok' else '✗'}")

    # ── Register ──────────────────────────────────────────────────
    print("\n1. Registering...")
    email = f"alice-{run_id}@example.com"
    resp = client.post(
        "/auth/register",
        json={"email": email, "password": "pw123-demo", "full_name": "Alice"},
    )
    assert resp.status_code == 201, f"Failed: {resp.text}"
    user = resp.json()["user"]
    print(f"   User: {user['email']} roles={user['roles']}")
    print(f"   Cookies: {sorted(client.cookies.keys())}")
    r1 = client.cookies["refreshToken"]

    # ── Check status (access cookie) ──────────────────────────────
    print("\n2. Checking status with the access cookie...")
    resp = client.get("/auth/check-status")
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print("   ✓ authenticated")

    # ── Refresh (rotation) ────────────────────────────────────────
    print("\n3. Refreshing...")
    resp = client.post("/auth/refresh")
    assert resp.status_code == 200, f"Failed: {resp.text}"
    r2 = client.cookies["refreshToken"]
    print(f"   Rotated: {r1[-8:]} → {r2[-8:]}")

    # ── Replay the old refresh token ──────────────────────────────
    print("\n4. Replaying the old refresh token...")
    with httpx.Client(base_url=BASE, timeout=10, cookies={"refreshToken": r1}) as replay:
        resp = replay.post("/auth/refresh")
    print(f"   {resp.status_code} {resp.json()['detail']}")
    assert resp.status_code == 401

    # ── Logout ────────────────────────────────────────────────────
    print("\n5. Logging out...")
    resp = client.post("/auth/logout")
    print(f"   {resp.json()['message']}")

    # ── Refresh after logout ──────────────────────────────────────
    print("\n6. Refreshing with the logged-out token...")
    with httpx.Client(base_url=BASE, timeout=10, cookies={"refreshToken": r2}) as stale:
        resp = stale.post("/auth/refresh")
    print(f"   {resp.status_code} {resp.json()['detail']}")
    assert resp.status_code == 401

    print("\nDone.")


if __name__ == "__main__":
    main()
