from storechat.services.llm import LLMProvider, Unavailable


def make_product(product_id: str, name: str, price: float, category: str, **extra) -> dict:
    return {
        "id": product_id,
        "name": name,
        "price": price,
        "category": category,
        "description": extra.pop("description", ""),
        "tags": extra.pop("tags", []),
        **extra,
    }


class ScriptedProvider(LLMProvider):
    """Returns queued replies in order; an Exception instance in the queue is raised instead."""

    def __init__(self, *replies, name: str = "scripted"):
        super().__init__(client=None, model=f"{name}-model")
        self.name = name
        self.replies = list(replies)
        self.calls = []

    async def complete(self, system_prompt, history, message):
        self.calls.append({"system_prompt": system_prompt, "history": list(history), "message": message})
        if not self.replies:
            raise Unavailable(f"{self.name} has no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


async def no_sleep(_delay):
    return None


def product_node_payload(gid: str, title: str, price: str, tags=None, product_type="", available=True) -> dict:
    """A Storefront API product node as returned inside `edges`."""
    return {
        "id": gid,
        "title": title,
        "description": "<p>Hand <b>made</b></p>",
        "handle": title.lower().replace(" ", "-"),
        "productType": product_type,
        "tags": tags or [],
        "onlineStoreUrl": None,
        "priceRange": {"minVariantPrice": {"amount": price, "currencyCode": "INR"}},
        "compareAtPriceRange": {"minVariantPrice": {"amount": "0.0"}},
        "images": {"edges": [{"node": {"url": f"https://cdn.test/{gid}.jpg"}}]},
        "variants": {"edges": [{"node": {
            "id": f"{gid}-v1", "title": "Default", "availableForSale": available,
            "quantityAvailable": 4 if available else 0,
            "price": {"amount": price, "currencyCode": "INR"},
        }}]},
    }
