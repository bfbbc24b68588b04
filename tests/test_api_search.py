from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from webhook_service.domain.search import ContactResult, SearchResults
from tests.utils import make_headers


@pytest.mark.asyncio
async def test_anonymous_search_returns_empty_results(service_client, search_repository):
    resp = await service_client.post("/api/v1/search", json={"query": "acme"})

    assert resp.status == 200
    assert await resp.json() == {"query": "acme", "results": {"deals": [], "contacts": [], "proposals": []}}
    assert search_repository.calls == []


@pytest.mark.asyncio
async def test_short_query_returns_empty_results(service_client, search_repository):
    resp = await service_client.post("/api/v1/search", json={"query": "%a"}, headers=make_headers(uuid.uuid4()))

    assert (await resp.json())["results"]["contacts"] == []
    assert search_repository.calls == []


@pytest.mark.asyncio
async def test_search_returns_repository_results(service_client, search_repository):
    search_repository.results = SearchResults(
        contacts=[
            ContactResult(
                id="c-1",
                full_name="Ada Lovelace",
                email="ada@example.com",
                updated_at=datetime(2026, 5, 1, tzinfo=timezone.utc),
            )
        ]
    )
    tenant_id = uuid.uuid4()

    resp = await service_client.post(
        "/api/v1/search",
        json={"query": "ada_", "filters": {"types": ["contacts"], "dateRange": "bogus"}, "track": True},
        headers=make_headers(tenant_id, role="member"),
    )

    assert resp.status == 200
    payload = await resp.json()
    assert payload["query"] == "ada"
    assert [c["id"] for c in payload["results"]["contacts"]] == ["c-1"]
    assert search_repository.calls[0]["filters"].date_range == "all"
    assert search_repository.history[0]["tenant_id"] == tenant_id


@pytest.mark.asyncio
async def test_search_rejects_malformed_body(service_client):
    resp = await service_client.post("/api/v1/search", data="not json", headers=make_headers(uuid.uuid4()))
    assert resp.status == 400


@pytest.mark.asyncio
async def test_saved_search_lifecycle(service_client, search_repository):
    headers = make_headers(uuid.uuid4(), role="member")

    resp = await service_client.post(
        "/api/v1/search/saved",
        json={"name": "Won deals", "query": "acme", "filters": {"types": ["deals"], "stages": ["won"]}},
        headers=headers,
    )
    assert resp.status == 201
    saved = (await resp.json())["saved"]
    assert saved["name"] == "Won deals"
    assert saved["filters"]["stages"] == ["won"]

    resp = await service_client.get("/api/v1/search/saved", headers=headers)
    assert [item["id"] for item in (await resp.json())["saved"]] == [saved["id"]]

    resp = await service_client.delete(f"/api/v1/search/saved/{saved['id']}", headers=headers)
    assert resp.status == 204
    resp = await service_client.delete(f"/api/v1/search/saved/{saved['id']}", headers=headers)
    assert resp.status == 404


@pytest.mark.asyncio
async def test_saved_search_requires_name_and_query(service_client):
    resp = await service_client.post(
        "/api/v1/search/saved", json={"name": "  ", "query": "acme"}, headers=make_headers(uuid.uuid4())
    )
    assert resp.status == 400


@pytest.mark.asyncio
async def test_saved_search_requires_user(service_client):
    resp = await service_client.get("/api/v1/search/saved")
    assert resp.status == 401
    resp = await service_client.get("/api/v1/search/meta")
    assert resp.status == 401


@pytest.mark.asyncio
async def test_search_meta_returns_saved_and_recent_history(service_client):
    headers = make_headers(uuid.uuid4())
    await service_client.post("/api/v1/search/saved", json={"name": "Acme", "query": "acme"}, headers=headers)
    for query in ["acme", "globex", "acme"]:
        await service_client.post("/api/v1/search", json={"query": query, "track": True}, headers=headers)

    resp = await service_client.get("/api/v1/search/meta", headers=headers)

    assert resp.status == 200
    payload = await resp.json()
    assert [item["name"] for item in payload["saved"]] == ["Acme"]
    assert [item["query"] for item in payload["history"]] == ["acme", "globex"]
