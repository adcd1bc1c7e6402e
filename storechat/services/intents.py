"""
Keyword classification of shopper messages.

This is the only fuzzy text matching the conversation flow depends on, so
it is kept here as a pure function returning a tagged Intent.
"""
import re
from dataclasses import dataclass
from enum import Enum


class IntentKind(str, Enum):
    GREETING = "greeting"
    SHOW_MORE = "show_more"
    PRICE_QUERY = "price_query"
    BROWSE = "browse"
    OTHER = "other"


@dataclass(frozen=True)
class PriceRange:
    min: int | None = None
    max: int | None = None


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    purchase_intent: str = "low"
    price: PriceRange | None = None


# Ready to buy
HIGH_INTENT_KEYWORDS = [
    "buy", "purchase", "add to cart", "checkout", "order",
    "price", "cost", "stock", "available", "size", "color",
    "cod", "delivery", "shipping", "how much", "when will",
]

# Interested, exploring
MEDIUM_INTENT_KEYWORDS = [
    "show", "looking for", "need", "want", "searching",
    "gift", "occasion", "under", "budget", "recommend",
    "suggest", "best", "popular", "trending", "new",
]

_GREETING_RE = re.compile(
    r"^\s*(hi+|hello+|hey+|hiya|yo|namaste|good (morning|afternoon|evening))\b[\s!.,?]*\w{0,10}[\s!.,?]*$",
    re.IGNORECASE,
)
_MORE_RE = re.compile(r"\b(more|next|another)\b", re.IGNORECASE)
_COMPARATIVE_RE = re.compile(r"\bmore\s+than\s*[₹$]?\s*\d", re.IGNORECASE)

_BETWEEN_RE = re.compile(r"(?:\bbetween\s*[₹$]?|[₹$])\s*(\d+)\s*(?:to|and|-)\s*[₹$]?\s*(\d+)")
_UNDER_RE = re.compile(r"\b(?:under|below|less than|within|upto|up to)\s*[₹$]?\s*(\d+)")
_ABOVE_RE = re.compile(r"\b(?:above|over|greater than|more than)\s*[₹$]?\s*(\d+)")


def detect_price(text: str) -> PriceRange | None:
    """Pull a budget out of free text: 'between X and Y', 'under X' or 'above X'."""
    msg = text.lower()

    between = _BETWEEN_RE.search(msg)
    if between:
        return PriceRange(min=int(between.group(1)), max=int(between.group(2)))

    under = _UNDER_RE.search(msg)
    if under:
        return PriceRange(max=int(under.group(1)))

    above = _ABOVE_RE.search(msg)
    if above:
        return PriceRange(min=int(above.group(1)))

    return None


def purchase_intent_level(text: str) -> str:
    msg = text.lower()
    if any(keyword in msg for keyword in HIGH_INTENT_KEYWORDS):
        return "high"
    if any(keyword in msg for keyword in MEDIUM_INTENT_KEYWORDS):
        return "medium"
    return "low"


def is_show_more(text: str) -> bool:
    return bool(_MORE_RE.search(text)) and not _COMPARATIVE_RE.search(text)


def classify_message(text: str) -> Intent:
    """Classify a shopper message. Show-more wins over price, price over greeting."""
    level = purchase_intent_level(text)

    if is_show_more(text):
        return Intent(IntentKind.SHOW_MORE, level)

    price = detect_price(text)
    if price is not None:
        return Intent(IntentKind.PRICE_QUERY, level, price)

    if _GREETING_RE.match(text):
        return Intent(IntentKind.GREETING, level)

    if level != "low":
        return Intent(IntentKind.BROWSE, level)

    return Intent(IntentKind.OTHER, level)
