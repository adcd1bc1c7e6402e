import json
import aiosqlite

_SEARCH_FIELDS = ("name", "category", "description", "tags")


def _product_from_row(row: aiosqlite.Row) -> dict:
    product = dict(row)
    product["tags"] = json.loads(product["tags"] or "[]")
    product["in_stock"] = bool(product["in_stock"])
    return product


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# --- Writes (catalog sync) ---

async def upsert_products(db_path: str, products: list[dict]) -> int:
    """Insert or refresh catalog items keyed by their platform id. Returns the number written."""
    if not products:
        return 0
    async with aiosqlite.connect(db_path) as db:
        await db.executemany(
            """
            INSERT INTO products (
                id, name, description, price, compare_at_price, category,
                tags, image_url, url, handle, in_stock, quantity
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                price = excluded.price,
                compare_at_price = excluded.compare_at_price,
                category = excluded.category,
                tags = excluded.tags,
                image_url = excluded.image_url,
                url = excluded.url,
                handle = excluded.handle,
                in_stock = excluded.in_stock,
                quantity = excluded.quantity,
                synced_at = datetime('now')
            """,
            [
                (
                    p["id"],
                    p["name"],
                    p.get("description", ""),
                    float(p.get("price") or 0),
                    p.get("compare_at_price"),
                    p.get("category") or "Uncategorized",
                    json.dumps(p.get("tags", [])),
                    p.get("image_url"),
                    p.get("url"),
                    p.get("handle"),
                    1 if p.get("in_stock", True) else 0,
                    int(p.get("quantity") or 0),
                )
                for p in products
            ],
        )
        await db.commit()
    return len(products)


# --- Reads ---

async def find_products(
    db_path: str,
    keywords: list[str],
    min_price: float,
    max_price: float,
    offset: int = 0,
    limit: int = 6,
) -> list[dict]:
    """
    In-stock products priced within [min_price, max_price] where every keyword
    appears (case-insensitive substring) in at least one searchable field.
    An empty keyword list filters on price only. Cheapest first.
    """
    clauses = ["in_stock = 1", "price >= ?", "price <= ?"]
    params: list = [min_price, max_price]
    for keyword in keywords:
        pattern = f"%{_escape_like(keyword)}%"
        clauses.append("(" + " OR ".join(f"{field} LIKE ? ESCAPE '\\'" for field in _SEARCH_FIELDS) + ")")
        params.extend([pattern] * len(_SEARCH_FIELDS))

    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            f"SELECT * FROM products WHERE {' AND '.join(clauses)} ORDER BY price ASC, id ASC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        rows = await cursor.fetchall()
        return [_product_from_row(row) for row in rows]


async def summarize_categories(db_path: str, samples: int = 3) -> list[dict]:
    """Per-category count, price range and the cheapest `samples` items, for priced in-stock products."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            SELECT category, COUNT(*) AS count, MIN(price) AS min_price, MAX(price) AS max_price
            FROM products
            WHERE price > 0 AND in_stock = 1
            GROUP BY category
            ORDER BY category
            """
        )
        summary = {row["category"]: {**dict(row), "samples": []} for row in await cursor.fetchall()}

        cursor = await db.execute(
            """
            SELECT category, name, price FROM (
                SELECT category, name, price,
                       ROW_NUMBER() OVER (PARTITION BY category ORDER BY price, id) AS position
                FROM products
                WHERE price > 0 AND in_stock = 1
            )
            WHERE position <= ?
            ORDER BY category, position
            """,
            (samples,),
        )
        for row in await cursor.fetchall():
            summary[row["category"]]["samples"].append({"name": row["name"], "price": row["price"]})
    return list(summary.values())


async def list_products(db_path: str, limit: int = 50, offset: int = 0) -> list[dict]:
    """Most recently synced products first."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM products ORDER BY synced_at DESC, id LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [_product_from_row(row) for row in await cursor.fetchall()]
