"""Catalog client — reads products from and writes suggestions to the shop's Admin GraphQL API.

Writes never raise: transport errors and GraphQL ``userErrors`` both come
back as a failed ``WriteResult`` so the sync step can record them per item.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

METAFIELD_NAMESPACE = "custom"
METAFIELD_TYPE = "single_line_text_field"

# Suggestion keys that map onto catalog metafields
FIELD_KEYS = frozenset({
    "color",
    "pattern",
    "material",
    "target_gender",
    "age_group",
    "neckline",
    "sleeve_length",
    "fit",
})
APPAREL_ONLY_KEYS = frozenset({"neckline", "sleeve_length", "fit"})
APPAREL_CATEGORIES = (
    "apparel", "clothing", "shirts", "tops", "dresses", "pants", "shorts",
    "skirts", "outerwear", "jackets", "coats", "sweaters",
)

_PAGE_SIZE = 50

_PRODUCT_UPDATE = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id }
    userErrors { field message }
  }
}
"""

_PRODUCTS_QUERY = """
query getProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    edges {
      cursor
      node {
        id
        title
        featuredImage { url }
        productType
        tags
        category { name }
      }
    }
    pageInfo { hasNextPage }
  }
}
"""


@dataclass
class WriteResult:
    ok: bool
    error: str | None = None


@dataclass
class CatalogProduct:
    id: str
    title: str
    image_url: str
    category: str | None
    tags: list[str]


def filter_fields_for_category(fields: dict[str, str], category: str | None) -> dict[str, str]:
    """Drop unknown keys, empty values, and apparel-only keys for non-apparel categories."""
    is_apparel = not category or any(c in category.lower() for c in APPAREL_CATEGORIES)
    return {
        key: value
        for key, value in fields.items()
        if key in FIELD_KEYS
        and value not in (None, "")
        and (is_apparel or key not in APPAREL_ONLY_KEYS)
    }


def to_metafield_inputs(fields: dict[str, str]) -> list[dict[str, str]]:
    return [
        {"namespace": METAFIELD_NAMESPACE, "key": key, "value": str(value), "type": METAFIELD_TYPE}
        for key, value in fields.items()
    ]


class CatalogClient:
    """Thin async client for one shop's catalog."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: str = "2024-10",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.shop_domain = shop_domain
        self.endpoint = f"https://{shop_domain}/admin/api/{api_version}/graphql.json"
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    async def _graphql(self, query: str, variables: dict) -> dict:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                headers={
                    "Content-Type": "application/json",
                    "X-Shopify-Access-Token": self._access_token,
                },
            )
            resp.raise_for_status()
            return resp.json()

    async def _update_product(self, product_input: dict) -> WriteResult:
        try:
            data = await self._graphql(_PRODUCT_UPDATE, {"input": product_input})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Catalog update failed for %s: %s", product_input.get("id"), exc)
            return WriteResult(ok=False, error=str(exc)[:500] or type(exc).__name__)

        if data.get("errors"):
            messages = ", ".join(e.get("message", "") for e in data["errors"])
            return WriteResult(ok=False, error=messages or "GraphQL error")
        payload = (data.get("data") or {}).get("productUpdate")
        if not isinstance(payload, dict):
            return WriteResult(ok=False, error="Empty productUpdate response")
        user_errors = payload.get("userErrors") or []
        if user_errors:
            return WriteResult(ok=False, error=", ".join(e.get("message", "") for e in user_errors))
        return WriteResult(ok=True)

    async def write_fields(
        self, item_id: str, fields: dict[str, str], category_hint: str | None = None,
    ) -> WriteResult:
        """Write structured suggestions as product metafields."""
        filtered = filter_fields_for_category(fields, category_hint)
        if not filtered:
            return WriteResult(ok=True)
        return await self._update_product(
            {"id": item_id, "metafields": to_metafield_inputs(filtered)},
        )

    async def write_labels(self, item_id: str, labels: list[str]) -> WriteResult:
        """Replace the product's tags with the suggested labels."""
        return await self._update_product({"id": item_id, "tags": labels})

    async def fetch_products(self, limit: int = 100) -> list[CatalogProduct]:
        """Fetch up to ``limit`` products that have an image, following cursors."""
        products: list[CatalogProduct] = []
        cursor: str | None = None
        has_next = True

        while has_next and len(products) < limit:
            data = await self._graphql(
                _PRODUCTS_QUERY,
                {"first": min(_PAGE_SIZE, limit - len(products)), "after": cursor},
            )
            connection = (data.get("data") or {}).get("products") or {}
            edges = connection.get("edges") or []

            for edge in edges:
                node = edge.get("node") or {}
                image = (node.get("featuredImage") or {}).get("url")
                if not image:
                    continue
                category = (node.get("category") or {}).get("name") or node.get("productType")
                products.append(CatalogProduct(
                    id=node["id"],
                    title=node.get("title", ""),
                    image_url=image,
                    category=category or None,
                    tags=list(node.get("tags") or []),
                ))

            has_next = bool((connection.get("pageInfo") or {}).get("hasNextPage"))
            cursor = edges[-1].get("cursor") if edges else None
            if cursor is None:
                break

        return products[:limit]
