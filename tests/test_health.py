from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_health(service_client):
    resp = await service_client.get("/health")
    assert resp.status == 200
    payload = await resp.json()
    assert payload["status"] == "ok"
    assert payload["service"] == "webhook-service"
    assert "X-Trace-Id" in resp.headers
