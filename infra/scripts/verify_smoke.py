from __future__ import annotations

import asyncio
import os
from uuid import uuid4

import httpx


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout_seconds
    last_status = "n/a"
    last_body = ""
    while asyncio.get_running_loop().time() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
            last_body = response.text
        except httpx.HTTPError as exc:
            last_status = "http_error"
            last_body = str(exc)
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}, detail={last_body}")


async def _sign_in(client: httpx.AsyncClient, email: str, password: str) -> str:
    response = await client.post("/api/identity/sign-in", json={"email": email, "password": password})
    _assert_status(response, 200)
    return response.json()["access_token"]


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    password = os.getenv("DEMO_PASSWORD", "demo")
    client_admin_email = os.getenv("CLIENT_ADMIN_EMAIL", "admin@empresa.local")
    run_id = uuid4().hex[:8]

    timeout = httpx.Timeout(20.0)
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        bootstrap_resp = await client.post("/api/identity/bootstrap")
        _assert_status(bootstrap_resp, 201)

        admin_token = await _sign_in(client, client_admin_email, password)
        headers = _auth_headers(admin_token)

        role_resp = await client.post(
            "/api/roles",
            json={
                "name": f"smoke-billing-{run_id}",
                "permissions": ["PORTAL.BOLETOS.VIEW"],
            },
            headers=headers,
        )
        _assert_status(role_resp, 201)
        role_id = role_resp.json()["id"]

        bad_role_resp = await client.post(
            "/api/roles",
            json={"name": f"smoke-bad-{run_id}", "permissions": ["BACKOFFICE.ADMIN.MANAGE_USERS"]},
            headers=headers,
        )
        _assert_status(bad_role_resp, 422)

        user_email = f"smoke-{run_id}@empresa.local"
        user_resp = await client.post(
            "/api/users",
            json={"name": f"Smoke {run_id}", "email": user_email, "role_id": role_id},
            headers=headers,
        )
        _assert_status(user_resp, 201)
        user_id = user_resp.json()["id"]

        override_resp = await client.put(
            f"/api/users/{user_id}/overrides/PORTAL.NFSE.VIEW",
            json={"allowed": True},
            headers=headers,
        )
        _assert_status(override_resp, 200)

        effective_resp = await client.get(f"/api/users/{user_id}/effective-permissions", headers=headers)
        _assert_status(effective_resp, 200)
        granted = {row["key"] for row in effective_resp.json() if row["allowed"]}
        if granted != {"PORTAL.BOLETOS.VIEW", "PORTAL.NFSE.VIEW"}:
            raise RuntimeError(f"unexpected effective permissions: {sorted(granted)}")

        user_token = await _sign_in(client, user_email, password)
        route_resp = await client.get(
            "/api/access/route",
            params={"path": "/portal/boletos"},
            headers=_auth_headers(user_token),
        )
        _assert_status(route_resp, 200)
        if not route_resp.json()["allowed"]:
            raise RuntimeError("billing user cannot reach /portal/boletos")

        in_use_resp = await client.delete(f"/api/roles/{role_id}", headers=headers)
        _assert_status(in_use_resp, 409)

        sign_out_resp = await client.post("/api/identity/sign-out", headers=_auth_headers(user_token))
        _assert_status(sign_out_resp, 204)

        delete_user_resp = await client.delete(f"/api/users/{user_id}", headers=headers)
        _assert_status(delete_user_resp, 204)
        delete_role_resp = await client.delete(f"/api/roles/{role_id}", headers=headers)
        _assert_status(delete_role_resp, 204)

    print("verify_smoke: healthz/readyz + sign-in + role/user CRUD + overrides + route access ok")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
