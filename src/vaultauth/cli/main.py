"""VaultAuth CLI — key management, token inspection, session control.

Usage:
    vaultauth keys init                      # Generate (or load) the signing key pair
    vaultauth keys jwks                      # Print the public JWKS
    vaultauth token inspect <TOKEN>          # Decode a token WITHOUT verifying it
    vaultauth hash-password                  # bcrypt hash for seeding a user row
    vaultauth login alice@example.com        # Print an access token for the env
    vaultauth sessions list                  # Your active sessions
    vaultauth sessions revoke <SESSION_ID>   # Sign one device out
    vaultauth logout [--all-devices]         # End this (or every) session

The last four talk to a running server at VAULTAUTH_API_URL and use the
access token in VAULTAUTH_ACCESS_TOKEN.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from datetime import datetime, timezone
from typing import Optional

import click
import httpx
import jwt

from vaultauth import __version__
from vaultauth.auth.keys import (
    FileKeyStore,
    KeyManagementError,
    KeyManager,
    VerificationKey,
    jwks,
    key_id,
)
from vaultauth.auth.password import hash_password
from vaultauth.auth.tokens import TokenVerifier

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_KEYS_DIR = "keys"


def _api_url() -> str:
    return os.environ.get("VAULTAUTH_API_URL", DEFAULT_API_URL).rstrip("/")


def _keys_dir(keys_dir: Optional[str]) -> str:
    return keys_dir or os.environ.get("VAULTAUTH_KEYS_DIR", DEFAULT_KEYS_DIR)


def _client() -> httpx.AsyncClient:
    """Async HTTP client carrying VAULTAUTH_ACCESS_TOKEN as bearer token."""
    headers = {}
    token = os.environ.get("VAULTAUTH_ACCESS_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous click handler.

    Inside an already-running loop (CliRunner in async tests) the
    coroutine is offloaded to a worker thread with its own loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


def _pretty_json(data) -> str:
    return json.dumps(data, indent=2, default=str)


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _check(r: httpx.Response) -> dict:
    """Return the JSON body, or exit with the server's error message."""
    if r.status_code >= 400:
        try:
            message = r.json().get("message", r.text)
        except ValueError:
            message = r.text
        _fail(f"{r.status_code} {message}")
    return r.json() if r.content else {}


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """columns: list of (header, dict_key, width)"""
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(
            str(row.get(k) if row.get(k) is not None else "-")[:w].ljust(w)
            for _, k, w in columns
        )
        click.echo(line)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="vaultauth")
def main():
    """VaultAuth — token authentication and session lifecycle."""


# ---------------------------------------------------------------------------
# vaultauth keys
# ---------------------------------------------------------------------------


@main.group()
def keys():
    """Signing key pair management."""


@keys.command("init")
@click.option("--keys-dir", help="Key directory (default: $VAULTAUTH_KEYS_DIR or ./keys)")
def keys_init(keys_dir: Optional[str]):
    """Generate the RS256 key pair, or load the existing one."""
    store = FileKeyStore(_keys_dir(keys_dir))
    existed = store.load() is not None
    try:
        pair = KeyManager(store).load_or_create()
    except (KeyManagementError, OSError) as e:
        _fail(str(e))
    verb = "Loaded existing" if existed else "Generated"
    click.secho(f"{verb} key pair in {store.keys_dir}", fg="green")
    click.echo(f"kid: {pair.kid}")


@keys.command("jwks")
@click.option("--keys-dir", help="Key directory (default: $VAULTAUTH_KEYS_DIR or ./keys)")
def keys_jwks(keys_dir: Optional[str]):
    """Print the JWKS document for the persisted public key."""
    store = FileKeyStore(_keys_dir(keys_dir))
    loaded = store.load()
    if loaded is None:
        _fail(f"no key pair in {store.keys_dir} (run `vaultauth keys init`)")
    _, public_pem = loaded
    click.echo(_pretty_json(jwks(VerificationKey("RS256", public_pem, key_id(public_pem)))))


# ---------------------------------------------------------------------------
# vaultauth token inspect
# ---------------------------------------------------------------------------


@main.group()
def token():
    """Token diagnostics."""


@token.command("inspect")
@click.argument("raw_token")
def token_inspect(raw_token: str):
    """Show a token's header and claims. Does NOT verify the signature."""
    payload = TokenVerifier.decode_unverified(raw_token)
    if payload is None:
        _fail("not a decodable JWT")
    click.secho("UNVERIFIED: signature and claims were not checked", fg="yellow")
    click.echo(_pretty_json({"header": jwt.get_unverified_header(raw_token)}))
    click.echo(_pretty_json({"claims": payload}))
    expiration = TokenVerifier.get_expiration(raw_token)
    if expiration is None:
        click.echo("exp: missing")
        return
    state = "EXPIRED" if expiration <= datetime.now(timezone.utc) else "not expired"
    click.echo(f"exp: {expiration.isoformat()} ({state})")


# ---------------------------------------------------------------------------
# vaultauth hash-password
# ---------------------------------------------------------------------------


@main.command("hash-password")
@click.password_option()
def hash_password_cmd(password: str):
    """Print a bcrypt hash for the users.password_hash column."""
    click.echo(hash_password(password))


# ---------------------------------------------------------------------------
# vaultauth login / logout
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
@click.option("--device-name", default="vaultauth-cli", show_default=True)
def login(email: str, password: str, device_name: str):
    """Log in and print the access token as a shell export line."""
    data = _run(_login_impl(email, password, device_name))
    click.secho(f"Logged in as {data['user']['email']} ({data['user']['role']})", err=True)
    click.echo(f"export VAULTAUTH_ACCESS_TOKEN={data['accessToken']}")


async def _login_impl(email: str, password: str, device_name: str) -> dict:
    async with _client() as c:
        r = await c.post("/api/v1/auth/login", json={
            "email": email,
            "password": password,
            "deviceInfo": {"name": device_name, "type": "cli"},
        })
        return _check(r)


@main.command()
@click.option("--all-devices", is_flag=True, help="Revoke every session, not just this one")
def logout(all_devices: bool):
    """Revoke the session behind VAULTAUTH_ACCESS_TOKEN."""
    data = _run(_logout_impl(all_devices))
    click.secho(f"{data['message']} ({data['sessionsRevoked']} session(s))", fg="green")


async def _logout_impl(all_devices: bool) -> dict:
    async with _client() as c:
        r = await c.post("/api/v1/auth/logout", json={"allDevices": all_devices})
        return _check(r)


# ---------------------------------------------------------------------------
# vaultauth sessions
# ---------------------------------------------------------------------------


@main.group()
def sessions():
    """Your active sessions."""


@sessions.command("list")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def sessions_list(as_json: bool):
    data = _run(_get("/api/v1/auth/sessions"))
    if as_json:
        click.echo(_pretty_json(data))
        return
    rows = [{**s, "current": "*" if s["isCurrent"] else ""} for s in data["sessions"]]
    if not rows:
        click.echo("No active sessions.")
        return
    _print_table(rows, [
        ("", "current", 1),
        ("SESSION", "sessionId", 36),
        ("DEVICE", "deviceName", 20),
        ("TYPE", "deviceType", 10),
        ("IP", "ipAddress", 15),
        ("LAST SEEN", "lastSeenAt", 25),
    ])


@sessions.command("revoke")
@click.argument("session_id")
def sessions_revoke(session_id: str):
    """Sign out one device by session id."""
    _run(_delete(f"/api/v1/auth/sessions/{session_id}"))
    click.secho(f"Session {session_id} revoked", fg="green")


async def _get(path: str) -> dict:
    async with _client() as c:
        return _check(await c.get(path))


async def _delete(path: str) -> dict:
    async with _client() as c:
        return _check(await c.delete(path))


if __name__ == "__main__":
    main()
