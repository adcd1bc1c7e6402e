from storechat.logging_config import get_logger
from storechat.services.catalog import CatalogDigestCache, CategorySummary
from storechat.services.commands import DEFAULT_MAX_PRICE, DIRECTIVE_TOKEN

logger = get_logger(__name__)

# (shopper input, model output) pairs; {c} is the currency symbol, {t} the directive token
FEW_SHOT_EXAMPLES = [
    ("hi", "Hey! How's it going? 😊"),
    ("show me rings", "Here are our rings! {t}[ring|0|{max}]"),
    ("necklace under 1000", "Perfect! Necklaces under {c}1000: {t}[necklace|0|1000]"),
    ("products above 1000", "Check out our premium collection above {c}1000: {t}[all|1000|{max}]"),
    ("skull ring under 500", "Edgy skull rings under {c}500: {t}[skull ring|0|500]"),
    ("expensive jewelry", "Our premium pieces above {c}1500: {t}[all|1500|{max}]"),
    ("show products between 500 and 1000", "Great range! Here are items {c}500-{c}1000: {t}[all|500|1000]"),
]


def format_digest(categories: list[CategorySummary], currency: str = "₹") -> str:
    """One line per category: name, count, price range and a few sample items."""
    lines = []
    for cat in categories:
        samples = ", ".join(f"{s['name']} ({currency}{round(s['price'])})" for s in cat.samples)
        lines.append(
            f"{cat.category} ({cat.count} items, {currency}{round(cat.min_price)}-{currency}{round(cat.max_price)})"
            + (f": {samples}" if samples else "")
        )
    return "\n".join(lines)


class PromptBuilder:
    def __init__(
        self,
        digest: CatalogDigestCache,
        store_name: str = "Crook Store",
        assistant_name: str = "Naina",
        currency: str = "₹",
        fallback_digest: str = "Rings, Necklaces, Bracelets, Earrings (₹200-₹2500)",
        default_max_price: int = DEFAULT_MAX_PRICE,
    ):
        self.digest = digest
        self.store_name = store_name
        self.assistant_name = assistant_name
        self.currency = currency
        self.fallback_digest = fallback_digest
        self.default_max_price = default_max_price

    async def catalog_digest(self) -> str:
        """Live category digest, or the static fallback when the catalog can't be summarized."""
        try:
            categories = await self.digest.get()
        except Exception as e:
            logger.warning(f"Catalog digest unavailable, using fallback: {e}")
            return self.fallback_digest
        return format_digest(categories, self.currency) or self.fallback_digest

    def _examples(self) -> str:
        blocks = []
        for user_input, output in FEW_SHOT_EXAMPLES:
            output = output.format(c=self.currency, t=DIRECTIVE_TOKEN, max=self.default_max_price)
            blocks.append(f'Input: "{user_input}"\nOutput: "{output}"')
        return "\n\n".join(blocks)

    async def build(self) -> str:
        catalog = await self.catalog_digest()
        t, c, top = DIRECTIVE_TOKEN, self.currency, self.default_max_price
        return f"""You are {self.assistant_name}, a friendly AI shopping assistant at {self.store_name}.

PRODUCT CATALOG:
{catalog}

HOW TO SHOW PRODUCTS:
Use command: {t}[keyword|minPrice|maxPrice]

EXAMPLES:

{self._examples()}

RULES:
- Always respond naturally
- For price filters, use format: {t}[keyword|minPrice|maxPrice]
- If user says "above X" → use minPrice=X, maxPrice={top}
- If user says "under X" → use minPrice=0, maxPrice=X
- If user says "between X and Y" → use minPrice=X, maxPrice=Y
- Use "all" as the keyword when no product type is mentioned
- Use at most one {t}[...] command per reply
- Prices are in {c}
- Keep responses SHORT (1-2 sentences)"""
