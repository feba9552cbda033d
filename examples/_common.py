"""
Shared helpers for ChatRelay examples.

Handles the health check and demo-user setup so each example can focus
on its specific flow.
"""

import sys
import uuid

import httpx

BASE = "http://localhost:8000/api/v1"


def check_backend(base: str = BASE) -> dict:
    """Verify a replica is reachable and print its dependency status."""
    try:
        resp = httpx.get(f"{base}/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {base}")
        print("Start it with:  chatrelay serve --port 8000")
        sys.exit(1)

    if resp.status_code != 200:
        print(f"ERROR: Health check returned {resp.status_code}")
        sys.exit(1)

    health = resp.json()
    print(f"Backend health ({health['instance']}):")
    print(f"  Database: {'✓' if health['database'] == 'ok' else '✗ ' + health['database']}")
    print(f"  Bus:      {'✓' if health['bus'] == 'ok' else '✗ ' + health['bus']}")

    if health["database"] != "ok":
        print("\nERROR: Database is not connected. Start it with: docker compose up -d")
        sys.exit(1)
    return health


def create_demo_users(client: httpx.Client, *names: str) -> list[dict]:
    """Register one user per name, suffixed so examples can be re-run."""
    run_id = uuid.uuid4().hex[:6]
    users = []
    for name in names:
        resp = client.post("/users", json={"username": f"{name}_{run_id}"})
        assert resp.status_code == 201, f"User creation failed: {resp.text}"
        user = resp.json()
        users.append(user)
        print(f"  User:    {user['username']} ({user['id'][:8]}...)")
    return users
