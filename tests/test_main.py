"""Tests for the application factory and middleware wiring."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from src.app.main import create_app


def test_personal_link_route_registered_last():
    app = create_app()
    paths = [route.path for route in app.routes if hasattr(route, "methods")]

    assert paths[-1] == "/{slug}"
    for path in ("/healthz", "/health/ready", "/metrics", "/login", "/oauth2/callback", "/logout"):
        assert paths.index(path) < paths.index("/{slug}")
    assert paths.index("/api/wait/{slug}/stream") < paths.index("/{slug}")


@pytest.mark.asyncio
async def test_request_id_header():
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.get("/healthz")
        second = await client.get("/healthz")

    assert first.status_code == 200
    assert first.headers["x-request-id"]
    assert first.headers["x-request-id"] != second.headers["x-request-id"]
