"""
Product-search directives embedded in model replies.

The model is instructed to append SHOW[keyword|minPrice|maxPrice] when the
shopper should see products. Only the first directive in a reply is
honoured; every directive is stripped from the text shown to the shopper.
"""
import math
import re
import sys
from dataclasses import asdict, dataclass

DIRECTIVE_TOKEN = "SHOW"
DEFAULT_MIN_PRICE = 0
DEFAULT_MAX_PRICE = 10000
# Largest bound SQLite can compare as an INTEGER
MAX_PRICE_BOUND = sys.maxsize

_DIRECTIVE_RE = re.compile(rf"{DIRECTIVE_TOKEN}\[([^\]]*)\]", re.IGNORECASE)
# A reply cut off mid-directive leaves an unclosed marker at the very end
_UNCLOSED_DIRECTIVE_RE = re.compile(rf"{DIRECTIVE_TOKEN}\[[^\]]*$", re.IGNORECASE)
_QUOTES_RE = re.compile(r"[\"'`]")


@dataclass(frozen=True)
class Directive:
    search: str
    min_price: int = DEFAULT_MIN_PRICE
    max_price: int = DEFAULT_MAX_PRICE

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Directive":
        return cls(
            search=str(data["search"]),
            min_price=int(data.get("min_price", DEFAULT_MIN_PRICE)),
            max_price=int(data.get("max_price", DEFAULT_MAX_PRICE)),
        )


def _parse_bound(value: str | None, default: int) -> int:
    if value is None:
        return default
    value = value.strip().lstrip("₹$€£").replace(",", "")
    try:
        number = float(value)
    except ValueError:
        return default
    if not math.isfinite(number):
        return default
    return int(min(max(number, 0), MAX_PRICE_BOUND))


def extract_directive(text: str, default_max_price: int = DEFAULT_MAX_PRICE) -> Directive | None:
    """Parse the first SHOW[...] directive in `text`, or return None if there is none."""
    if not text:
        return None
    match = _DIRECTIVE_RE.search(text)
    if match is None:
        return None

    # Without a "|" the whole bracket content is the search term
    parts = match.group(1).split("|")
    search = _QUOTES_RE.sub("", parts[0]).strip()
    if not search:
        return None
    return Directive(
        search=search,
        min_price=_parse_bound(parts[1] if len(parts) > 1 else None, DEFAULT_MIN_PRICE),
        max_price=_parse_bound(parts[2] if len(parts) > 2 else None, default_max_price),
    )


def strip_directives(text: str) -> str:
    """Remove every directive from `text` and tidy the whitespace left behind."""
    if not text:
        return ""
    cleaned = _DIRECTIVE_RE.sub("", text)
    cleaned = _UNCLOSED_DIRECTIVE_RE.sub("", cleaned)
    cleaned = re.sub(r"[ \t]+([.,!?:;])", r"\1", cleaned)
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    return cleaned.strip()
