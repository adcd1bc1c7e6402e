"""Shared fixtures: a fresh SQLite file per test, a small catalog, and scripted model providers."""

import pytest

from storechat.models.catalog import upsert_products
from storechat.models.database import init_db
from storechat.services.catalog import CatalogDigestCache, CatalogQueryEngine
from storechat.services.conversation import ConversationManager
from storechat.services.llm import LanguageModelGateway
from storechat.services.prompts import PromptBuilder
from storechat.services.session_store import SessionStore
from tests.helpers import ScriptedProvider, make_product, no_sleep


@pytest.fixture
async def db_path(tmp_path):
    path = str(tmp_path / "store.db")
    await init_db(path)
    return path


@pytest.fixture
async def ring_catalog(db_path):
    await upsert_products(db_path, [
        make_product("r1", "Silver Band Ring", 200, "Ring", tags=["ring", "silver"]),
        make_product("r2", "Skull Ring", 400, "Ring", tags=["ring", "skull"]),
        make_product("r3", "Gold Ring", 600, "Ring", tags=["ring", "gold"]),
        make_product("n1", "Pearl Necklace", 900, "Necklace", tags=["necklace", "pearl"]),
        make_product("n2", "Layered Chain Necklace", 1500, "Necklace", description="Two gold chains"),
    ])
    return db_path


@pytest.fixture
async def necklace_catalog(db_path):
    """Fourteen necklaces priced 100..1400, enough for more than two pages."""
    await upsert_products(db_path, [
        make_product(f"n{i:02d}", f"Necklace {i}", i * 100, "Necklace") for i in range(1, 15)
    ])
    return db_path


@pytest.fixture
def make_manager():
    def _make(db_path, *replies, fallback=None, page_size=6):
        catalog = CatalogQueryEngine(db_path, page_size=page_size)
        prompts = PromptBuilder(CatalogDigestCache(catalog, ttl_seconds=0))
        primary = ScriptedProvider(*replies, name="primary")
        gateway = LanguageModelGateway(primary, fallback, sleep=no_sleep)
        return ConversationManager(SessionStore(db_path), catalog, prompts, gateway)
    return _make
