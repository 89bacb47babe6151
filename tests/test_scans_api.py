"""Tests for the scan, job and sync endpoints."""

import uuid

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import update

from app.api.deps import get_catalog
from app.main import app
from app.models.item import Item, ItemStatus, encode_fields, encode_labels
from app.services.catalog import CatalogProduct, WriteResult


async def _bootstrap(client: AsyncClient, slug: str) -> dict:
    resp = await client.post("/v1/tenants", json={
        "name": f"{slug} Co",
        "slug": slug,
        "shop_domain": f"{slug}.myshopify.com",
    })
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['api_token']}"}


def _items(n: int) -> list[dict]:
    return [
        {
            "external_id": f"gid://shopify/Product/{i}",
            "title": f"Product {i}",
            "image_ref": f"https://cdn.example.com/p{i}.jpg",
            "category": "Shirts",
        }
        for i in range(1, n + 1)
    ]


class StubCatalog:
    def __init__(self, products=(), fetch_error: Exception | None = None) -> None:
        self.products = list(products)
        self.fetch_error = fetch_error
        self.writes: list[str] = []

    async def fetch_products(self, limit: int = 100):
        if self.fetch_error:
            raise self.fetch_error
        return self.products[:limit]

    async def write_fields(self, item_id, fields, category_hint=None):
        self.writes.append(item_id)
        return WriteResult(ok=True)

    async def write_labels(self, item_id, labels):
        return WriteResult(ok=True)


@pytest.fixture
def use_catalog():
    def _install(catalog):
        app.dependency_overrides[get_catalog] = lambda: catalog
        return catalog
    return _install


# ── Auth ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_requires_a_token(client: AsyncClient):
    resp = await client.get("/v1/jobs")
    assert resp.status_code in (401, 403)


@pytest.mark.asyncio
async def test_rejects_unknown_token(client: AsyncClient):
    resp = await client.get("/v1/jobs", headers={"Authorization": "Bearer vtag_nope"})
    assert resp.status_code == 401


# ── Scans ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_scan_with_items(client: AsyncClient, arq_pool):
    headers = await _bootstrap(client, "scan-items")

    resp = await client.post("/v1/scans", json={"items": _items(3)}, headers=headers)

    assert resp.status_code == 202, resp.text
    data = resp.json()
    assert data["job"]["total_items"] == 3
    assert data["job"]["status"] == "QUEUED"
    assert data["enqueued"] == 3
    assert data["use_overage"] is False
    assert len(arq_pool.jobs) == 3


@pytest.mark.asyncio
async def test_scan_with_repeated_items_enqueues_every_item(client: AsyncClient, arq_pool):
    headers = await _bootstrap(client, "scan-repeat")
    items = _items(2)

    resp = await client.post("/v1/scans", json={"items": items + items[:1]}, headers=headers)

    assert resp.status_code == 202, resp.text
    data = resp.json()
    assert data["job"]["total_items"] == 2
    assert data["enqueued"] == data["job"]["total_items"]
    assert len(arq_pool.jobs) == 2


@pytest.mark.asyncio
async def test_scan_over_quota_is_payment_required(client: AsyncClient, arq_pool):
    headers = await _bootstrap(client, "scan-quota")

    resp = await client.post("/v1/scans", json={"items": _items(51)}, headers=headers)

    assert resp.status_code == 402
    assert "50 remaining" in resp.json()["detail"]
    assert arq_pool.jobs == {}
    jobs = await client.get("/v1/jobs", headers=headers)
    assert jobs.json() == []


@pytest.mark.asyncio
async def test_scan_with_empty_items_is_rejected(client: AsyncClient):
    headers = await _bootstrap(client, "scan-empty")
    resp = await client.post("/v1/scans", json={"items": []}, headers=headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_scan_from_catalog_needs_credentials(client: AsyncClient):
    headers = await _bootstrap(client, "scan-nocat")
    resp = await client.post("/v1/scans", json={}, headers=headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_scan_from_catalog(client: AsyncClient, use_catalog):
    headers = await _bootstrap(client, "scan-cat")
    use_catalog(StubCatalog([
        CatalogProduct(id="gid://shopify/Product/1", title="Shirt", image_url="https://cdn/1.jpg",
                       category="Shirts", tags=["Summer"]),
        CatalogProduct(id="gid://shopify/Product/2", title="Mug", image_url="https://cdn/2.jpg",
                       category="Kitchen", tags=[]),
    ]))

    resp = await client.post("/v1/scans", json={}, headers=headers)

    assert resp.status_code == 202, resp.text
    job_id = resp.json()["job"]["id"]
    detail = await client.get(f"/v1/jobs/{job_id}", headers=headers)
    assert {i["external_id"] for i in detail.json()["items"]} == {
        "gid://shopify/Product/1", "gid://shopify/Product/2",
    }


@pytest.mark.asyncio
async def test_scan_from_unreachable_catalog(client: AsyncClient, use_catalog):
    headers = await _bootstrap(client, "scan-down")
    use_catalog(StubCatalog(fetch_error=httpx.ConnectError("down")))

    resp = await client.post("/v1/scans", json={}, headers=headers)
    assert resp.status_code == 502


# ── Jobs ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_job_detail_lists_items(client: AsyncClient):
    headers = await _bootstrap(client, "job-detail")
    created = await client.post("/v1/scans", json={"items": _items(2)}, headers=headers)
    job_id = created.json()["job"]["id"]

    resp = await client.get(f"/v1/jobs/{job_id}", headers=headers)

    assert resp.status_code == 200
    data = resp.json()
    assert data["job"]["processed"] == 0
    assert len(data["items"]) == 2
    assert all(i["status"] == "PENDING" for i in data["items"])
    assert data["items"][0]["suggested_fields"] == {}
    assert data["items"][0]["suggested_labels"] == []

    listing = await client.get("/v1/jobs", headers=headers)
    assert [j["id"] for j in listing.json()] == [job_id]


@pytest.mark.asyncio
async def test_jobs_are_tenant_scoped(client: AsyncClient):
    owner = await _bootstrap(client, "job-owner")
    stranger = await _bootstrap(client, "job-stranger")
    created = await client.post("/v1/scans", json={"items": _items(1)}, headers=owner)
    job_id = created.json()["job"]["id"]

    assert (await client.get(f"/v1/jobs/{job_id}", headers=stranger)).status_code == 404
    assert (await client.get(f"/v1/jobs/{uuid.uuid4()}", headers=owner)).status_code == 404
    assert (await client.get("/v1/jobs", headers=stranger)).json() == []


@pytest.mark.asyncio
async def test_requeue_after_queue_outage(client: AsyncClient, arq_pool):
    headers = await _bootstrap(client, "job-requeue")
    arq_pool.fail = True
    created = await client.post("/v1/scans", json={"items": _items(2)}, headers=headers)
    assert created.json()["job"]["status"] == "FAILED"
    job_id = created.json()["job"]["id"]

    arq_pool.fail = False
    resp = await client.post(f"/v1/jobs/{job_id}/requeue", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["enqueued"] == 2
    detail = await client.get(f"/v1/jobs/{job_id}", headers=headers)
    assert detail.json()["job"]["status"] == "QUEUED"


# ── Sync ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sync_requires_a_field_group(client: AsyncClient, use_catalog):
    headers = await _bootstrap(client, "sync-groups")
    use_catalog(StubCatalog())
    resp = await client.post(
        "/v1/sync", json={"item_ids": [str(uuid.uuid4())], "field_groups": []}, headers=headers,
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_sync_needs_catalog_credentials(client: AsyncClient):
    headers = await _bootstrap(client, "sync-nocat")
    resp = await client.post("/v1/sync", json={"item_ids": [str(uuid.uuid4())]}, headers=headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_sync_analyzed_items(client: AsyncClient, session_factory, use_catalog):
    headers = await _bootstrap(client, "sync-ok")
    created = await client.post("/v1/scans", json={"items": _items(2)}, headers=headers)
    job_id = created.json()["job"]["id"]
    detail = await client.get(f"/v1/jobs/{job_id}", headers=headers)
    first, second = detail.json()["items"]

    async with session_factory() as s:
        await s.execute(
            update(Item)
            .where(Item.id == uuid.UUID(first["id"]))
            .values(
                status=ItemStatus.ANALYZED,
                suggested_fields=encode_fields({"color": "Red"}),
                suggested_labels=encode_labels(["Red"]),
            )
        )
        await s.commit()
    catalog = use_catalog(StubCatalog())

    resp = await client.post(
        "/v1/sync", json={"item_ids": [first["id"], second["id"]]}, headers=headers,
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "synced_count": 1, "failed_count": 0, "skipped_count": 1, "per_item_errors": {},
    }
    assert catalog.writes == [first["external_id"]]
