"""
Catalog query engine: turns a Directive into a page of products, and
summarizes the catalog for the system prompt.
"""
import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Callable

from storechat.logging_config import get_logger
from storechat.models.catalog import find_products, summarize_categories
from storechat.services.commands import Directive

logger = get_logger(__name__)

DEFAULT_GENERIC_TERMS = frozenset(
    {"all", "items", "products", "jewelry", "jewellery", "everything", "anything", "collection", "catalog"}
)


@dataclass
class CategorySummary:
    category: str
    count: int
    min_price: float
    max_price: float
    samples: list[dict] = field(default_factory=list)


def _stem(word: str) -> str:
    # rings -> ring, necklaces -> necklace; leave "dress", "glass" alone
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def search_keywords(term: str, generic_terms=DEFAULT_GENERIC_TERMS) -> list[str]:
    """Keywords every match must contain. Empty for catalog-wide terms like 'all' or 'products'."""
    normalized = term.lower().strip()
    if not normalized or normalized in generic_terms:
        return []
    words = [w for w in re.split(r"[^\w-]+", normalized) if w]
    if not words:
        return [normalized]
    keywords = [_stem(w) for w in words if w not in generic_terms]
    return keywords


class CatalogQueryEngine:
    def __init__(self, db_path: str, page_size: int = 6, generic_terms=DEFAULT_GENERIC_TERMS, samples: int = 3):
        self.db_path = db_path
        self.page_size = page_size
        self.generic_terms = frozenset(t.lower() for t in generic_terms)
        self.samples = samples

    async def search(self, directive: Directive, offset: int = 0) -> list[dict]:
        """Up to page_size matching products, cheapest first, starting at `offset`."""
        keywords = search_keywords(directive.search, self.generic_terms)
        logger.info(
            f"Searching '{directive.search}' keywords={keywords} "
            f"price={directive.min_price}-{directive.max_price} offset={offset}"
        )
        # Inverted bounds simply match nothing
        if directive.min_price > directive.max_price:
            return []

        products = await find_products(
            self.db_path,
            keywords,
            directive.min_price,
            directive.max_price,
            offset=max(offset, 0),
            limit=self.page_size,
        )
        logger.info(f"Found {len(products)} products")
        return products

    async def summarize(self) -> list[CategorySummary]:
        rows = await summarize_categories(self.db_path, samples=self.samples)
        return [
            CategorySummary(
                category=row["category"],
                count=row["count"],
                min_price=row["min_price"],
                max_price=row["max_price"],
                samples=row["samples"],
            )
            for row in rows
        ]


class CatalogDigestCache:
    """
    Holds the category summary for `ttl_seconds` so every turn does not hit
    the products table. Owned by the application; call invalidate() after a
    catalog sync.
    """

    def __init__(self, engine: CatalogQueryEngine, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: list[CategorySummary] | None = None
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()

    def _fresh(self) -> bool:
        return self._value is not None and self._clock() - self._loaded_at < self.ttl_seconds

    async def get(self) -> list[CategorySummary]:
        if self._fresh():
            return self._value
        async with self._lock:
            if not self._fresh():
                self._value = await self.engine.summarize()
                self._loaded_at = self._clock()
                logger.debug(f"Catalog digest reloaded ({len(self._value)} categories)")
        return self._value

    def invalidate(self):
        self._value = None
        self._loaded_at = 0.0
