#!/usr/bin/env python3
"""
vaultauth Quickstart — the full token lifecycle in one script.

Logs in → calls /me → rotates the refresh token → shows the old one is
dead → lists sessions → logs out → shows the access token is dead.
Run with: python examples/quickstart.py

Requires: pip install httpx
Server must be running: http://localhost:8000
"""

import sys

import httpx

from _common import BASE, bearer_client, check_backend, credentials, login


def main():
    check_backend()
    email, password = credentials()

    # ── Login ─────────────────────────────────────────────────────
    print("\n1. Logging in...")
    tokens = login(email, password, device_name="quickstart")
    print(f"   User:    {tokens['user']['email']} ({tokens['user']['role']})")
    print(f"   Session: {tokens['sessionId'][:8]}...")
    print(f"   Access token expires in {tokens['expiresIn']}s")

    # ── Who am I ──────────────────────────────────────────────────
    print("\n2. Calling /auth/me with the access token...")
    client = bearer_client(tokens["accessToken"])
    resp = client.get("/auth/me")
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   Admitted as {resp.json()['user']['firstName']}")

    # ── Refresh (rotation) ────────────────────────────────────────
    print("\n3. Rotating the refresh token...")
    old_refresh = tokens["refreshToken"]
    resp = httpx.post(f"{BASE}/auth/refresh", json={"refreshToken": old_refresh}, timeout=10)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    rotated = resp.json()
    assert rotated["sessionId"] == tokens["sessionId"]
    print(f"   Same session, new pair (session {rotated['sessionId'][:8]}...)")

    # ── Replay the old refresh token ──────────────────────────────
    print("\n4. Replaying the old refresh token (should fail)...")
    resp = httpx.post(f"{BASE}/auth/refresh", json={"refreshToken": old_refresh}, timeout=10)
    assert resp.status_code == 401, f"Replay was accepted: {resp.text}"
    print(f"   Rejected: {resp.json()['message']}")

    # ── Sessions ──────────────────────────────────────────────────
    print("\n5. Listing sessions...")
    client = bearer_client(rotated["accessToken"])
    resp = client.get("/auth/sessions")
    assert resp.status_code == 200, f"Failed: {resp.text}"
    for s in resp.json()["sessions"]:
        marker = "*" if s["isCurrent"] else " "
        print(f"   {marker} {s['sessionId'][:8]}...  {s.get('deviceName') or '-'}  last seen {s['lastSeenAt']}")

    # ── Logout ────────────────────────────────────────────────────
    print("\n6. Logging out...")
    resp = client.post("/auth/logout")
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   {resp.json()['message']}")

    resp = client.get("/auth/me")
    if resp.status_code != 401:
        print(f"ERROR: access token still works after logout ({resp.status_code})")
        sys.exit(1)
    print(f"   Access token now rejected: {resp.json()['message']}")

    print("\n✓ Quickstart complete.")


if __name__ == "__main__":
    main()
