from pathlib import Path
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    SQLITE_DB_PATH: str = str(BASE_DIR / "data" / "store.db")
    LOG_LEVEL: str = "INFO"

    # Storefront persona
    STORE_NAME: str = "Crook Store"
    ASSISTANT_NAME: str = "Naina"
    CURRENCY_SYMBOL: str = "₹"

    # Conversation
    HISTORY_TURNS: int = 8
    MIN_REPLY_LENGTH: int = 3

    # Catalog
    PRODUCT_PAGE_SIZE: int = 6
    DEFAULT_MAX_PRICE: int = 10000
    GENERIC_SEARCH_TERMS: list[str] = [
        "all", "items", "products", "jewelry", "jewellery",
        "everything", "anything", "collection", "catalog",
    ]
    CATALOG_DIGEST_TTL_SECONDS: float = 60.0
    CATALOG_DIGEST_SAMPLES: int = 3
    FALLBACK_CATALOG_DIGEST: str = "Rings, Necklaces, Bracelets, Earrings (₹200-₹2500)"

    # Language model providers
    LLM_PRIMARY_PROVIDER: str = "groq"
    LLM_FALLBACK_PROVIDER: str = "gemini"
    LLM_TIMEOUT_SECONDS: float = 20.0
    LLM_MAX_TOKENS: int = 150
    LLM_TEMPERATURE: float = 0.9
    LLM_RATE_LIMIT_RETRIES: int = 3
    LLM_BACKOFF_BASE_SECONDS: float = 0.5
    LLM_BACKOFF_MAX_SECONDS: float = 4.0
    LLM_REQUESTS_PER_MINUTE: int = 0          # 0 disables client-side throttling
    GROQ_API_KEY: str = ""
    GROQ_MODEL: str = "llama-3.3-70b-versatile"
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    ANTHROPIC_API_KEY: str = ""
    CLAUDE_MODEL: str = "claude-sonnet-4-20250514"

    # Shopify
    SHOPIFY_STORE_DOMAIN: str = ""          # empty disables catalog sync
    SHOPIFY_STOREFRONT_ACCESS_TOKEN: str = ""
    SHOPIFY_API_VERSION: str = "2025-01"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
