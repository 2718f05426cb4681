"""
Shared helpers for vaultauth examples.

Handles the health check and login so each example can focus on its
specific part of the token lifecycle.
"""

import os
import sys

import httpx

BASE = os.environ.get("VAULTAUTH_URL", "http://localhost:8000/api/v1")


def check_backend() -> dict:
    """Verify the server is reachable and its TTL store answers."""
    try:
        resp = httpx.get(f"{BASE}/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Server not reachable at {BASE}")
        print("Start it with:  uvicorn vaultauth.main:app --reload --port 8000")
        sys.exit(1)

    if resp.status_code != 200:
        print(f"ERROR: Health check returned {resp.status_code}")
        sys.exit(1)

    health = resp.json()
    print("Server health:")
    print(f"  TTL store: {'✓' if health['ttl_store'] == 'ok' else '✗'} ({health['ttl_store']})")
    print(f"  Key mode:  {health['key_mode']}")

    if health["status"] != "healthy":
        print("\nERROR: TTL store is down, every authenticated request would be rejected.")
        sys.exit(1)
    return health


def login(email: str, password: str, device_name: str = "examples") -> dict:
    """Log in and return the token response body."""
    resp = httpx.post(
        f"{BASE}/auth/login",
        json={
            "email": email,
            "password": password,
            "deviceInfo": {"name": device_name, "type": "cli"},
        },
        timeout=10,
    )
    if resp.status_code != 200:
        print(f"ERROR: Login failed: {resp.status_code} {resp.text}")
        sys.exit(1)
    return resp.json()


def credentials() -> tuple[str, str]:
    """Demo credentials from the environment."""
    email = os.environ.get("VAULTAUTH_DEMO_EMAIL")
    password = os.environ.get("VAULTAUTH_DEMO_PASSWORD")
    if not email or not password:
        print("Set VAULTAUTH_DEMO_EMAIL and VAULTAUTH_DEMO_PASSWORD to an account in the directory.")
        sys.exit(1)
    return email, password


def bearer_client(access_token: str) -> httpx.Client:
    """httpx Client that sends the access token on every request."""
    return httpx.Client(
        base_url=BASE,
        timeout=10,
        headers={"Authorization": f"Bearer {access_token}"},
    )
