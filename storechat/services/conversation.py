"""
Conversation orchestrator.

One turn: record the shopper message, prompt the model with the catalog
digest and recent history, pull the SHOW[...] directive out of the reply,
run it against the catalog (or continue the previous search for "show
more"), and persist everything. Every path ends with a non-empty reply;
failures become ERROR_REPLY with no products.
"""
from dataclasses import dataclass, field
from enum import Enum

from storechat.logging_config import get_logger
from storechat.services.catalog import CatalogQueryEngine
from storechat.services.commands import DEFAULT_MAX_PRICE, Directive, extract_directive, strip_directives
from storechat.services.intents import IntentKind, classify_message
from storechat.services.llm import FALLBACK_REPLY, LanguageModelGateway
from storechat.services.prompts import PromptBuilder
from storechat.services.session_store import SessionStore

logger = get_logger(__name__)

GREETING_FALLBACK = "Hey! What can I help with? 😊"
NO_PRODUCTS_MESSAGE = "Hmm, no products found in that price range. Try adjusting your budget! 😊"
NO_MORE_PRODUCTS_MESSAGE = "That's all in this range! Want to see something else? 😊"
ERROR_REPLY = "Oops! Something went wrong 😅"


class TurnState(str, Enum):
    RECEIVED = "received"
    PROMPTED = "prompted"
    MODEL_REPLIED = "model_replied"
    DIRECTIVE_EXTRACTED = "directive_extracted"
    CATALOG_QUERIED = "catalog_queried"
    RESPONDED = "responded"


@dataclass
class TurnResult:
    response: str
    products: list[dict] = field(default_factory=list)
    intent: str = "low"


class ConversationManager:
    def __init__(
        self,
        sessions: SessionStore,
        catalog: CatalogQueryEngine,
        prompts: PromptBuilder,
        gateway: LanguageModelGateway,
        history_turns: int = 8,
        min_reply_length: int = 3,
        default_max_price: int = DEFAULT_MAX_PRICE,
    ):
        self.sessions = sessions
        self.catalog = catalog
        self.prompts = prompts
        self.gateway = gateway
        self.history_turns = history_turns
        self.min_reply_length = min_reply_length
        self.default_max_price = default_max_price

    @property
    def page_size(self) -> int:
        return self.catalog.page_size

    async def process_message(self, session_id: str, message: str, visitor_info: dict | None = None) -> TurnResult:
        msg = message.strip()
        async with self.sessions.lock(session_id):
            return await self._turn(session_id, msg, visitor_info)

    async def get_history(self, session_id: str) -> list[dict]:
        return await self.sessions.get_history(session_id)

    async def _turn(self, session_id: str, msg: str, visitor_info: dict | None) -> TurnResult:
        state = TurnState.RECEIVED
        intent = classify_message(msg)
        logger.info(f"[{session_id}] USER: {msg!r} ({intent.kind.value}, {intent.purchase_intent} intent)")

        try:
            session = await self.sessions.get_or_create(session_id, visitor_info)
            history = await self.sessions.recent_messages(session_id, self.history_turns)
            await self.sessions.append_message(session_id, "user", msg)

            system_prompt = await self.prompts.build()
            state = TurnState.PROMPTED

            raw_reply = await self.gateway.generate(system_prompt, history, msg)
            state = TurnState.MODEL_REPLIED
            logger.info(f"[{session_id}] MODEL RAW: {raw_reply!r}")
            if raw_reply == FALLBACK_REPLY:
                await self.sessions.log_event(session_id, "llm_fallback")

            directive = extract_directive(raw_reply, self.default_max_price)
            reply = strip_directives(raw_reply)
            state = TurnState.DIRECTIVE_EXTRACTED
            logger.info(f"[{session_id}] DIRECTIVE: {directive}")

            if len(reply) < self.min_reply_length:
                reply = GREETING_FALLBACK
            await self.sessions.append_message(session_id, "assistant", reply)

            products = []
            if directive is not None:
                products = await self.catalog.search(directive, 0)
                state = TurnState.CATALOG_QUERIED
                await self.sessions.update_attributes(
                    session_id, {"lastSearch": directive.to_dict(), "productOffset": 0}
                )
                await self.sessions.log_event(
                    session_id, "product_search", {**directive.to_dict(), "results": len(products)}
                )
                if not products:
                    return await self._correct_reply(session_id, NO_PRODUCTS_MESSAGE, intent.purchase_intent)
                await self.sessions.track_product_views(session_id, [p["id"] for p in products])

            elif intent.kind == IntentKind.SHOW_MORE and session["attributes"].get("lastSearch"):
                last_search = Directive.from_dict(session["attributes"]["lastSearch"])
                offset = int(session["attributes"].get("productOffset", 0)) + self.page_size
                products = await self.catalog.search(last_search, offset)
                state = TurnState.CATALOG_QUERIED
                await self.sessions.update_attributes(session_id, {"productOffset": offset})
                await self.sessions.log_event(session_id, "show_more", {"offset": offset, "results": len(products)})
                if not products:
                    return await self._correct_reply(session_id, NO_MORE_PRODUCTS_MESSAGE, intent.purchase_intent)
                await self.sessions.track_product_views(session_id, [p["id"] for p in products])

            state = TurnState.RESPONDED
            logger.info(f"[{session_id}] {state.value.upper()}: {reply!r} with {len(products)} products")
            return TurnResult(response=reply, products=products, intent=intent.purchase_intent)

        except Exception:
            logger.exception(f"[{session_id}] Turn failed in state {state.value}")
            try:
                await self.sessions.append_message(session_id, "assistant", ERROR_REPLY)
            except Exception:
                logger.exception(f"[{session_id}] Could not record the error reply")
            return TurnResult(response=ERROR_REPLY, products=[], intent=intent.purchase_intent)

    async def _correct_reply(self, session_id: str, text: str, purchase_intent: str) -> TurnResult:
        """Replace the model's reply once the catalog turned out to have nothing to show."""
        await self.sessions.replace_last_assistant_message(session_id, text)
        await self.sessions.log_event(session_id, "no_results")
        logger.info(f"[{session_id}] REPLY corrected: {text!r}")
        return TurnResult(response=text, products=[], intent=purchase_intent)
