from contextlib import asynccontextmanager
import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from storechat.api.router import router
from storechat.config import Settings, settings
from storechat.logging_config import get_logger, setup_logging
from storechat.models.database import init_db
from storechat.services.catalog import CatalogDigestCache, CatalogQueryEngine
from storechat.services.conversation import ConversationManager
from storechat.services.llm import LanguageModelGateway, build_provider
from storechat.services.prompts import PromptBuilder
from storechat.services.session_store import SessionStore
from storechat.services.shopify import ShopifyClient

logger = get_logger(__name__)


def build_conversation(app_settings: Settings, http_client: httpx.AsyncClient) -> tuple[ConversationManager, CatalogDigestCache]:
    """Wire the conversation pipeline from settings."""
    db_path = app_settings.SQLITE_DB_PATH
    catalog = CatalogQueryEngine(
        db_path,
        page_size=app_settings.PRODUCT_PAGE_SIZE,
        generic_terms=app_settings.GENERIC_SEARCH_TERMS,
        samples=app_settings.CATALOG_DIGEST_SAMPLES,
    )
    digest = CatalogDigestCache(catalog, ttl_seconds=app_settings.CATALOG_DIGEST_TTL_SECONDS)
    prompts = PromptBuilder(
        digest,
        store_name=app_settings.STORE_NAME,
        assistant_name=app_settings.ASSISTANT_NAME,
        currency=app_settings.CURRENCY_SYMBOL,
        fallback_digest=app_settings.FALLBACK_CATALOG_DIGEST,
        default_max_price=app_settings.DEFAULT_MAX_PRICE,
    )
    fallback = None
    if app_settings.LLM_FALLBACK_PROVIDER:
        fallback = build_provider(app_settings.LLM_FALLBACK_PROVIDER, app_settings, http_client)
    gateway = LanguageModelGateway(
        build_provider(app_settings.LLM_PRIMARY_PROVIDER, app_settings, http_client),
        fallback,
        retries=app_settings.LLM_RATE_LIMIT_RETRIES,
        backoff_base=app_settings.LLM_BACKOFF_BASE_SECONDS,
        backoff_max=app_settings.LLM_BACKOFF_MAX_SECONDS,
        requests_per_minute=app_settings.LLM_REQUESTS_PER_MINUTE,
    )
    manager = ConversationManager(
        SessionStore(db_path),
        catalog,
        prompts,
        gateway,
        history_turns=app_settings.HISTORY_TURNS,
        min_reply_length=app_settings.MIN_REPLY_LENGTH,
        default_max_price=app_settings.DEFAULT_MAX_PRICE,
    )
    return manager, digest


def create_app(app_settings: Settings = settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # startup: create tables, open the shared HTTP clients, wire services
        setup_logging(app_settings.LOG_LEVEL)
        await init_db(app_settings.SQLITE_DB_PATH)
        http_client = httpx.AsyncClient(timeout=app_settings.LLM_TIMEOUT_SECONDS)
        app.state.settings = app_settings
        app.state.conversation, app.state.digest = build_conversation(app_settings, http_client)
        app.state.shopify = None
        if app_settings.SHOPIFY_STORE_DOMAIN:
            app.state.shopify = ShopifyClient(
                app_settings.SHOPIFY_STORE_DOMAIN,
                app_settings.SHOPIFY_STOREFRONT_ACCESS_TOKEN,
                api_version=app_settings.SHOPIFY_API_VERSION,
            )
        logger.info(
            f"Started with {app_settings.LLM_PRIMARY_PROVIDER} -> {app_settings.LLM_FALLBACK_PROVIDER or 'none'}"
        )
        yield
        # shutdown: close HTTP clients
        await http_client.aclose()
        if app.state.shopify is not None:
            await app.state.shopify.close()

    app = FastAPI(
        title="Store Chat Assistant",
        description="An AI shopping assistant that answers shoppers and surfaces products from a synced Shopify catalog.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    app.include_router(router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
