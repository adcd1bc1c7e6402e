import pytest

from storechat.models.catalog import list_products, upsert_products
from storechat.services.catalog import CatalogDigestCache, CatalogQueryEngine, search_keywords
from storechat.services.commands import Directive
from tests.helpers import make_product


def test_search_keywords():
    assert search_keywords("Rings") == ["ring"]
    assert search_keywords("skull ring") == ["skull", "ring"]
    assert search_keywords("dress") == ["dress"]
    assert search_keywords("all") == []
    assert search_keywords("gold jewelry") == ["gold"]


@pytest.mark.asyncio
async def test_keyword_and_price_filter_sorted_by_price(ring_catalog):
    engine = CatalogQueryEngine(ring_catalog)
    products = await engine.search(Directive("ring", 0, 500))
    assert [p["id"] for p in products] == ["r1", "r2"]
    assert [p["price"] for p in products] == [200, 400]


@pytest.mark.asyncio
async def test_matches_description_and_tags_case_insensitively(ring_catalog):
    engine = CatalogQueryEngine(ring_catalog)
    assert [p["id"] for p in await engine.search(Directive("GOLD", 0, 10000))] == ["r3", "n2"]
    assert [p["id"] for p in await engine.search(Directive("skull ring", 0, 10000))] == ["r2"]
    assert [p["id"] for p in await engine.search(Directive("necklaces", 0, 10000))] == ["n1", "n2"]


@pytest.mark.asyncio
async def test_generic_terms_filter_on_price_only(ring_catalog):
    engine = CatalogQueryEngine(ring_catalog)
    products = await engine.search(Directive("products", 500, 1000))
    assert [p["id"] for p in products] == ["r3", "n1"]


@pytest.mark.asyncio
async def test_inverted_or_unmatched_ranges_return_empty(ring_catalog):
    engine = CatalogQueryEngine(ring_catalog)
    assert await engine.search(Directive("ring", 600, 200)) == []
    assert await engine.search(Directive("ring", 100000, 100001)) == []
    assert await engine.search(Directive("tiara", 0, 10000)) == []


@pytest.mark.asyncio
async def test_out_of_stock_items_are_excluded(db_path):
    await upsert_products(db_path, [
        make_product("a", "Ruby Ring", 300, "Ring"),
        make_product("b", "Opal Ring", 250, "Ring", in_stock=False),
    ])
    engine = CatalogQueryEngine(db_path)
    assert [p["id"] for p in await engine.search(Directive("ring", 0, 1000))] == ["a"]


@pytest.mark.asyncio
async def test_pages_do_not_overlap(necklace_catalog):
    engine = CatalogQueryEngine(necklace_catalog, page_size=6)
    directive = Directive("necklace", 0, 10000)
    first = await engine.search(directive, 0)
    second = await engine.search(directive, 6)
    third = await engine.search(directive, 12)

    assert len(first) == len(second) == 6
    assert len(third) == 2
    ids = [p["id"] for p in first + second + third]
    assert len(ids) == len(set(ids)) == 14
    assert [p["price"] for p in first + second + third] == sorted(p["price"] for p in first + second + third)


@pytest.mark.asyncio
async def test_equal_prices_have_stable_order(db_path):
    await upsert_products(db_path, [make_product(f"p{i}", f"Charm {i}", 100, "Charm") for i in range(4)])
    engine = CatalogQueryEngine(db_path, page_size=2)
    first = await engine.search(Directive("charm", 0, 100), 0)
    second = await engine.search(Directive("charm", 0, 100), 2)
    assert [p["id"] for p in first + second] == ["p0", "p1", "p2", "p3"]


@pytest.mark.asyncio
async def test_like_wildcards_in_search_are_literal(ring_catalog):
    engine = CatalogQueryEngine(ring_catalog)
    assert await engine.search(Directive("%", 0, 10000)) == []


@pytest.mark.asyncio
async def test_summarize(ring_catalog):
    engine = CatalogQueryEngine(ring_catalog, samples=2)
    summary = {s.category: s for s in await engine.summarize()}

    assert set(summary) == {"Ring", "Necklace"}
    assert summary["Ring"].count == 3
    assert (summary["Ring"].min_price, summary["Ring"].max_price) == (200, 600)
    assert [s["name"] for s in summary["Ring"].samples] == ["Silver Band Ring", "Skull Ring"]


@pytest.mark.asyncio
async def test_upsert_refreshes_existing_rows(db_path):
    await upsert_products(db_path, [make_product("a", "Ruby Ring", 300, "Ring")])
    await upsert_products(db_path, [make_product("a", "Ruby Ring", 350, "Ring")])
    products = await list_products(db_path)
    assert len(products) == 1
    assert products[0]["price"] == 350


class CountingEngine:
    def __init__(self):
        self.calls = 0

    async def summarize(self):
        self.calls += 1
        return []


@pytest.mark.asyncio
async def test_digest_cache_ttl_and_invalidate():
    now = [0.0]
    engine = CountingEngine()
    cache = CatalogDigestCache(engine, ttl_seconds=60, clock=lambda: now[0])

    await cache.get()
    await cache.get()
    assert engine.calls == 1

    now[0] = 61
    await cache.get()
    assert engine.calls == 2

    cache.invalidate()
    await cache.get()
    assert engine.calls == 3
