import asyncio
from contextlib import asynccontextmanager

from storechat.logging_config import get_logger
from storechat.models import database

logger = get_logger(__name__)


class SessionStore:
    """Per-visitor conversation state backed by the sessions/messages tables."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def lock(self, session_id: str):
        """Serialize turns for one session. The lock is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._waiters[session_id] = self._waiters.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[session_id] -= 1
            if self._waiters[session_id] == 0:
                del self._waiters[session_id]
                del self._locks[session_id]

    async def get_or_create(self, session_id: str, visitor_info: dict | None = None) -> dict:
        session = await database.get_or_create_session(self.db_path, session_id, visitor_info)
        if session["message_count"] == 0:
            logger.info(f"New session: {session_id}")
        return session

    async def get(self, session_id: str) -> dict | None:
        return await database.get_session(self.db_path, session_id)

    async def append_message(self, session_id: str, role: str, content: str) -> int | None:
        message_id = await database.save_message(self.db_path, session_id, role, content)
        logger.debug(f"Saved {role} message: {content[:30]!r}")
        return message_id

    async def replace_last_assistant_message(self, session_id: str, content: str) -> bool:
        return await database.replace_last_message(self.db_path, session_id, "assistant", content)

    async def update_attributes(self, session_id: str, attributes: dict) -> dict:
        return await database.update_attributes(self.db_path, session_id, attributes)

    async def track_product_views(self, session_id: str, product_ids: list[str]):
        await database.add_product_views(self.db_path, session_id, product_ids)

    async def viewed_products(self, session_id: str) -> list[str]:
        return await database.get_viewed_products(self.db_path, session_id)

    async def recent_messages(self, session_id: str, limit: int) -> list[dict]:
        return await database.get_messages(self.db_path, session_id, limit=limit)

    async def get_history(self, session_id: str) -> list[dict]:
        return await database.get_messages(self.db_path, session_id)

    async def log_event(self, session_id: str, event_type: str, event_data: dict | None = None):
        await database.log_event(self.db_path, session_id, event_type, event_data)

    async def clear(self, session_id: str) -> bool:
        return await database.delete_session(self.db_path, session_id)
