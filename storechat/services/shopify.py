import re
import httpx

from storechat.logging_config import get_logger
from storechat.models.catalog import upsert_products

logger = get_logger(__name__)

# Checked in order against tags first, then the title
CATEGORY_RULES = [
    ("Necklace", r"necklace|pendant|locket|chain|haar"),
    ("Bracelet", r"bracelet|bangle|kada"),
    ("Earring", r"earring|jhumka|earstud"),
    ("Ring", r"\brings?\b|anguthi"),
]

_PRODUCT_FIELDS = """
    id
    title
    description
    handle
    productType
    tags
    onlineStoreUrl
    priceRange {
        minVariantPrice { amount currencyCode }
    }
    compareAtPriceRange {
        minVariantPrice { amount }
    }
    images(first: 1) {
        edges { node { url } }
    }
    variants(first: 20) {
        edges {
            node {
                id
                title
                availableForSale
                quantityAvailable
                price { amount currencyCode }
            }
        }
    }
"""


class ShopifyError(Exception):
    pass


def infer_category(title: str, tags: list[str], product_type: str = "") -> str:
    """Use the merchant's product type when set, otherwise keyword rules over tags and title."""
    if product_type and product_type.strip():
        return product_type.strip()
    tag_text = " ".join(tags).lower()
    for category, pattern in CATEGORY_RULES:
        if re.search(pattern, tag_text):
            return category
    name = title.lower()
    for category, pattern in CATEGORY_RULES:
        if re.search(pattern, name):
            return category
    return "Uncategorized"


class ShopifyClient:
    def __init__(self, store_domain: str, storefront_token: str, api_version: str = "2025-01", client: httpx.AsyncClient | None = None):
        self.store_domain = store_domain
        self.storefront_url = f"https://{store_domain}/api/{api_version}/graphql.json"
        self._client = client or httpx.AsyncClient(timeout=15.0)

        self.storefront_headers = {
            "X-Shopify-Storefront-Access-Token": storefront_token,
            "Content-Type": "application/json",
        }

    # -- Low-level helpers --

    async def _storefront_query(self, query: str, variables: dict | None = None) -> dict:
        """Send a GraphQL query to the Storefront API."""
        response = await self._client.post(
            self.storefront_url,
            headers=self.storefront_headers,
            json={"query": query, "variables": variables or {}},
        )
        response.raise_for_status()
        data = response.json()
        if "errors" in data:
            raise ShopifyError(f"Shopify API error: {data['errors']}")
        return data["data"]

    # -- Product methods --

    async def fetch_all_products(self, page_size: int = 100) -> list[dict]:
        """Walk the whole catalog through the Storefront API, following page cursors."""
        gql = f"""
        query AllProducts($first: Int!, $after: String) {{
            products(first: $first, after: $after, sortKey: ID) {{
                pageInfo {{ hasNextPage endCursor }}
                edges {{ node {{ {_PRODUCT_FIELDS} }} }}
            }}
        }}
        """
        items, cursor = [], None
        while True:
            data = await self._storefront_query(gql, {"first": page_size, "after": cursor})
            page = data["products"]
            items.extend(self.to_catalog_item(edge["node"]) for edge in page["edges"])
            if not page["pageInfo"]["hasNextPage"]:
                break
            cursor = page["pageInfo"]["endCursor"]
        logger.info(f"Fetched {len(items)} products from {self.store_domain}")
        return items

    # -- Helper to turn raw GraphQL into catalog items --

    def to_catalog_item(self, node: dict) -> dict:
        """Turn a raw GraphQL product node into a row for the products table."""
        images = [edge["node"]["url"] for edge in node.get("images", {}).get("edges", [])]
        variants = [edge["node"] for edge in node.get("variants", {}).get("edges", [])]
        tags = node.get("tags") or []
        compare_at = (node.get("compareAtPriceRange") or {}).get("minVariantPrice", {}).get("amount")
        description = re.sub(r"<[^>]*>", "", node.get("description") or "")[:500]
        return {
            "id": node["id"],
            "name": node["title"],
            "description": description,
            "price": float(node["priceRange"]["minVariantPrice"]["amount"]),
            "compare_at_price": float(compare_at) if compare_at and float(compare_at) > 0 else None,
            "category": infer_category(node["title"], tags, node.get("productType", "")),
            "tags": tags,
            "handle": node.get("handle", ""),
            "image_url": images[0] if images else None,
            "url": node.get("onlineStoreUrl") or f"https://{self.store_domain}/products/{node.get('handle', '')}",
            "in_stock": any(v.get("availableForSale") for v in variants) if variants else True,
            "quantity": sum(v.get("quantityAvailable") or 0 for v in variants),
        }

    async def close(self):
        """Close the underlying HTTP client."""
        await self._client.aclose()


async def sync_catalog(client: ShopifyClient, db_path: str) -> int:
    """Pull every product from the store into the local catalog. Returns the number of products written."""
    products = await client.fetch_all_products()
    written = await upsert_products(db_path, products)
    logger.info(f"Catalog sync complete: {written} products")
    return written
