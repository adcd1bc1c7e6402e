import json
from pathlib import Path
import aiosqlite


async def init_db(db_path: str):
    """Create tables if they don't exist. Called once on app startup."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                id                   TEXT PRIMARY KEY,
                created_at           TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at           TEXT NOT NULL DEFAULT (datetime('now')),
                first_visit          TEXT NOT NULL DEFAULT (datetime('now')),
                last_visit           TEXT NOT NULL DEFAULT (datetime('now')),
                visitor_info         TEXT,
                attributes           TEXT NOT NULL DEFAULT '{}',
                message_count        INTEGER NOT NULL DEFAULT 0,
                total_products_shown INTEGER NOT NULL DEFAULT 0,
                status               TEXT NOT NULL DEFAULT 'active'
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_updated
                ON sessions(updated_at);

            CREATE TABLE IF NOT EXISTS messages (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id  TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                role        TEXT NOT NULL,
                content     TEXT NOT NULL,
                created_at  TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE INDEX IF NOT EXISTS idx_messages_session
                ON messages(session_id, id);

            CREATE TABLE IF NOT EXISTS product_views (
                session_id  TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                product_id  TEXT NOT NULL,
                first_seen  TEXT NOT NULL DEFAULT (datetime('now')),
                PRIMARY KEY (session_id, product_id)
            );

            CREATE TABLE IF NOT EXISTS events (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id  TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                event_type  TEXT NOT NULL,
                event_data  TEXT,
                created_at  TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE INDEX IF NOT EXISTS idx_events_session
                ON events(session_id);

            CREATE INDEX IF NOT EXISTS idx_events_type
                ON events(event_type, created_at);

            CREATE TABLE IF NOT EXISTS products (
                id               TEXT PRIMARY KEY,
                name             TEXT NOT NULL,
                description      TEXT NOT NULL DEFAULT '',
                price            REAL NOT NULL DEFAULT 0,
                compare_at_price REAL,
                category         TEXT NOT NULL DEFAULT 'Uncategorized',
                tags             TEXT NOT NULL DEFAULT '[]',
                image_url        TEXT,
                url              TEXT,
                handle           TEXT,
                in_stock         INTEGER NOT NULL DEFAULT 1,
                quantity         INTEGER NOT NULL DEFAULT 0,
                synced_at        TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE INDEX IF NOT EXISTS idx_products_price
                ON products(price, id);

            CREATE INDEX IF NOT EXISTS idx_products_category
                ON products(category);
        """)
        await db.commit()


def _session_from_row(row: aiosqlite.Row) -> dict:
    session = dict(row)
    session["visitor_info"] = json.loads(session["visitor_info"]) if session["visitor_info"] else {}
    session["attributes"] = json.loads(session["attributes"] or "{}")
    return session


# --- Session CRUD ---

async def get_or_create_session(db_path: str, session_id: str, visitor_info: dict | None = None) -> dict:
    """Create the session on first sight, otherwise refresh its last_visit. Returns the session row."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute(
            """
            INSERT INTO sessions (id, visitor_info) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET
                last_visit = datetime('now'),
                updated_at = datetime('now'),
                status = 'active'
            """,
            (session_id, json.dumps(visitor_info) if visitor_info else None),
        )
        await db.commit()
        cursor = await db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        return _session_from_row(row)


async def get_session(db_path: str, session_id: str) -> dict | None:
    """Fetch a session by ID. Returns None if not found."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM sessions WHERE id = ?",
            (session_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _session_from_row(row)


async def count_sessions(db_path: str, session_id: str | None = None) -> int:
    async with aiosqlite.connect(db_path) as db:
        if session_id is None:
            cursor = await db.execute("SELECT COUNT(*) FROM sessions")
        else:
            cursor = await db.execute("SELECT COUNT(*) FROM sessions WHERE id = ?", (session_id,))
        (count,) = await cursor.fetchone()
        return count


async def list_sessions(db_path: str, limit: int = 20, offset: int = 0) -> list[dict]:
    """List active sessions, most recent first."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM sessions WHERE status = 'active' ORDER BY updated_at DESC, id LIMIT ? OFFSET ?",
            (limit, offset),
        )
        rows = await cursor.fetchall()
        return [_session_from_row(row) for row in rows]


async def update_attributes(db_path: str, session_id: str, attributes: dict) -> dict:
    """Shallow-merge attributes into the session. Returns the merged mapping."""
    async with aiosqlite.connect(db_path) as db:
        # Take the write lock before reading so concurrent merges can't interleave
        await db.execute("BEGIN IMMEDIATE")
        cursor = await db.execute("SELECT attributes FROM sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        if row is None:
            await db.rollback()
            raise KeyError(session_id)
        merged = {**json.loads(row[0] or "{}"), **attributes}
        await db.execute(
            "UPDATE sessions SET attributes = ?, updated_at = datetime('now') WHERE id = ?",
            (json.dumps(merged), session_id),
        )
        await db.commit()
        return merged


async def delete_session(db_path: str, session_id: str) -> bool:
    """Remove a session with its messages, views and events. Returns False if it did not exist."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute("PRAGMA foreign_keys = ON")
        cursor = await db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        await db.commit()
        return cursor.rowcount > 0


# --- Message CRUD ---

async def save_message(db_path: str, session_id: str, role: str, content: str) -> int | None:
    """Append a message to the conversation. Returns the message id."""
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "INSERT INTO messages (session_id, role, content) VALUES (?, ?, ?)",
            (session_id, role, content),
        )
        await db.execute(
            "UPDATE sessions SET message_count = message_count + 1, updated_at = datetime('now') WHERE id = ?",
            (session_id,),
        )
        await db.commit()
        return cursor.lastrowid


async def replace_last_message(db_path: str, session_id: str, role: str, content: str) -> bool:
    """Overwrite the content of the newest message with the given role."""
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            """
            UPDATE messages SET content = ?
            WHERE id = (SELECT MAX(id) FROM messages WHERE session_id = ? AND role = ?)
            """,
            (content, session_id, role),
        )
        await db.commit()
        return cursor.rowcount > 0


async def get_messages(db_path: str, session_id: str, limit: int | None = None) -> list[dict]:
    """Load messages for a session, oldest first. With a limit, only the newest `limit` messages."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        if limit is None:
            cursor = await db.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY id ASC",
                (session_id,),
            )
            rows = await cursor.fetchall()
        else:
            cursor = await db.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY id DESC LIMIT ?",
                (session_id, limit),
            )
            rows = list(reversed(await cursor.fetchall()))
        return [dict(row) for row in rows]


# --- Product views ---

async def add_product_views(db_path: str, session_id: str, product_ids: list[str]):
    """Record products shown to a session. The viewed set is deduplicated; the shown counter is not."""
    if not product_ids:
        return
    async with aiosqlite.connect(db_path) as db:
        await db.executemany(
            "INSERT OR IGNORE INTO product_views (session_id, product_id) VALUES (?, ?)",
            [(session_id, product_id) for product_id in product_ids],
        )
        await db.execute(
            "UPDATE sessions SET total_products_shown = total_products_shown + ? WHERE id = ?",
            (len(product_ids), session_id),
        )
        await db.commit()


async def get_viewed_products(db_path: str, session_id: str) -> list[str]:
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "SELECT product_id FROM product_views WHERE session_id = ? ORDER BY first_seen, product_id",
            (session_id,),
        )
        return [row[0] for row in await cursor.fetchall()]


# --- Event Logging ---

async def log_event(
    db_path: str,
    session_id: str,
    event_type: str,
    event_data: dict | None = None,
):
    """Log an analytics event (product_search, show_more, no_results, etc.)."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            "INSERT INTO events (session_id, event_type, event_data) VALUES (?, ?, ?)",
            (session_id, event_type, json.dumps(event_data) if event_data else None),
        )
        await db.commit()


async def get_events(db_path: str, session_id: str, event_type: str | None = None) -> list[dict]:
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        query = "SELECT * FROM events WHERE session_id = ?"
        params: tuple = (session_id,)
        if event_type:
            query += " AND event_type = ?"
            params += (event_type,)
        cursor = await db.execute(query + " ORDER BY id", params)
        events = [dict(row) for row in await cursor.fetchall()]
    for event in events:
        event["event_data"] = json.loads(event["event_data"]) if event["event_data"] else None
    return events
