from fastapi import Request

from storechat.services.conversation import ConversationManager
from storechat.services.session_store import SessionStore


def get_db_path(request: Request) -> str:
    """Provide the database path to endpoint functions."""
    return request.app.state.settings.SQLITE_DB_PATH


def get_conversation_manager(request: Request) -> ConversationManager:
    return request.app.state.conversation


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.conversation.sessions


def get_catalog_sync(request: Request):
    """The (client, digest cache) pair used by the sync endpoint; client is None when Shopify is not configured."""
    return request.app.state.shopify, request.app.state.digest
