"""Tests for tenant bootstrap and the system health endpoint."""

import uuid

import pytest
from httpx import AsyncClient

from app.core.security import API_TOKEN_PREFIX, decrypt_value
from app.models.tenant import Tenant


@pytest.mark.asyncio
async def test_bootstrap_creates_tenant_ledger_and_token(client: AsyncClient):
    resp = await client.post("/v1/tenants", json={
        "name": "Acme Apparel",
        "slug": "acme-apparel",
        "shop_domain": "acme.myshopify.com",
    })

    assert resp.status_code == 201
    data = resp.json()
    assert data["tenant"]["slug"] == "acme-apparel"
    assert data["plan"] == "FREE"
    assert data["api_token"].startswith(API_TOKEN_PREFIX)
    assert data["api_token"].startswith(data["token_prefix"])

    me = await client.get("/v1/tenants/me", headers={"Authorization": f"Bearer {data['api_token']}"})
    assert me.status_code == 200
    assert me.json()["shop_domain"] == "acme.myshopify.com"


@pytest.mark.asyncio
async def test_catalog_token_is_stored_encrypted(client: AsyncClient, session_factory):
    resp = await client.post("/v1/tenants", json={
        "name": "Secret", "slug": "secret", "catalog_access_token": "shpat_abc123",
    })
    tenant_id = resp.json()["tenant"]["id"]

    async with session_factory() as s:
        tenant = await s.get(Tenant, uuid.UUID(tenant_id))
    assert tenant.catalog_token_encrypted != "shpat_abc123"
    assert decrypt_value(tenant.catalog_token_encrypted) == "shpat_abc123"


@pytest.mark.asyncio
async def test_duplicate_slug_conflicts(client: AsyncClient):
    body = {"name": "One", "slug": "taken"}
    assert (await client.post("/v1/tenants", json=body)).status_code == 201
    assert (await client.post("/v1/tenants", json=body)).status_code == 409


@pytest.mark.asyncio
async def test_invalid_slug_is_rejected(client: AsyncClient):
    resp = await client.post("/v1/tenants", json={"name": "Bad", "slug": "Not A Slug"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_system_health(client: AsyncClient):
    resp = await client.get("/v1/system/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["database"]["status"] == "ok"
    assert data["queue"]["status"] == "ok"
    assert data["queued_tasks"] == 0


@pytest.mark.asyncio
async def test_root_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok"}
