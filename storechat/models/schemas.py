from pydantic import BaseModel, Field


# --- Session schemas ---

class SessionInfo(BaseModel):
    session_id: str
    created_at: str
    message_count: int
    last_active: str


class Message(BaseModel):
    role: str
    content: str
    timestamp: str


class SessionDetail(BaseModel):
    session_id: str
    created_at: str
    status: str
    visitor_info: dict
    attributes: dict
    products_viewed: list[str]
    total_products_shown: int
    messages: list[Message]


# --- Chat schemas ---

class ChatRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=128)
    message: str = Field(min_length=1, max_length=2000)


class ProductSummary(BaseModel):
    id: str
    name: str
    price: float
    category: str
    image_url: str | None = None
    url: str | None = None


class ChatResponse(BaseModel):
    session_id: str
    response: str
    products: list[ProductSummary] = []
    intent: str = "low"


# --- Catalog schemas ---

class SyncResponse(BaseModel):
    synced: int
