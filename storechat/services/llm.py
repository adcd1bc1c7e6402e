"""
Language model gateway.

Each provider turns (system prompt, history, message) into reply text over
a shared httpx client and raises a classified LLMError on failure. The
gateway owns the policy: exponential backoff on rate limits within one
provider, a single failover to the fallback provider, and finally a fixed
apology instead of an exception.
"""
import asyncio
import random
import time
from collections import deque
from typing import Awaitable, Callable

import httpx

from storechat.config import Settings
from storechat.logging_config import get_logger

logger = get_logger(__name__)

FALLBACK_REPLY = "I'm here to help! What are you looking for today? 😊"


class LLMError(Exception):
    """Base class for classified provider failures."""


class RateLimited(LLMError):
    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class Unavailable(LLMError):
    pass


class InvalidResponse(LLMError):
    pass


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class LLMProvider:
    """Base provider: subclasses build the request and read the reply out of the JSON body."""

    name = "provider"

    def __init__(self, client: httpx.AsyncClient, model: str, max_tokens: int = 150, temperature: float = 0.9):
        self._client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def _post(self, url: str, headers: dict, payload: dict) -> dict:
        try:
            response = await self._client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise Unavailable(f"{self.name} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise Unavailable(f"{self.name} unreachable: {e}") from e

        if response.status_code == 429:
            raise RateLimited(f"{self.name} rate limited", retry_after=_retry_after(response))
        if response.status_code >= 400:
            raise Unavailable(f"{self.name} returned HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponse(f"{self.name} returned a non-JSON body") from e

    async def complete(self, system_prompt: str, history: list[dict], message: str) -> str:
        raise NotImplementedError


class GroqProvider(LLMProvider):
    """OpenAI-compatible chat completions (Groq)."""

    name = "groq"

    def __init__(self, client: httpx.AsyncClient, api_key: str, model: str, base_url: str, **kwargs):
        super().__init__(client, model, **kwargs)
        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self.headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    async def complete(self, system_prompt: str, history: list[dict], message: str) -> str:
        messages = [{"role": "system", "content": system_prompt}]
        messages += [
            {"role": "assistant" if h["role"] == "assistant" else "user", "content": str(h["content"])}
            for h in history
        ]
        messages.append({"role": "user", "content": message})

        data = await self._post(self.url, self.headers, {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": 0.95,
            "frequency_penalty": 0.3,
            "presence_penalty": 0.3,
        })
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise InvalidResponse(f"groq response missing content: {data}") from e


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(self, client: httpx.AsyncClient, api_key: str, model: str, base_url: str, **kwargs):
        super().__init__(client, model, **kwargs)
        self.url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self.headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

    async def complete(self, system_prompt: str, history: list[dict], message: str) -> str:
        contents = [
            {"role": "model" if h["role"] == "assistant" else "user", "parts": [{"text": str(h["content"])}]}
            for h in history
        ]
        contents.append({"role": "user", "parts": [{"text": message}]})

        data = await self._post(self.url, self.headers, {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": contents,
            "generationConfig": {"temperature": self.temperature, "maxOutputTokens": self.max_tokens},
        })
        try:
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise InvalidResponse(f"gemini response missing content: {data}") from e


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    url = "https://api.anthropic.com/v1/messages"

    def __init__(self, client: httpx.AsyncClient, api_key: str, model: str, **kwargs):
        super().__init__(client, model, **kwargs)
        self.headers = {
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }

    async def complete(self, system_prompt: str, history: list[dict], message: str) -> str:
        messages = []
        for h in history:
            role = "assistant" if h["role"] == "assistant" else "user"
            # The Messages API rejects two consecutive turns with the same role
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"] += "\n" + str(h["content"])
            else:
                messages.append({"role": role, "content": str(h["content"])})
        if messages and messages[-1]["role"] == "user":
            messages[-1]["content"] += "\n" + message
        else:
            messages.append({"role": "user", "content": message})

        data = await self._post(self.url, self.headers, {
            "model": self.model,
            "system": system_prompt,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": min(self.temperature, 1.0),
        })
        try:
            return "".join(block.get("text", "") for block in data["content"] if block.get("type") == "text")
        except (KeyError, TypeError, AttributeError) as e:
            raise InvalidResponse(f"anthropic response missing content: {data}") from e


def build_provider(name: str, settings: Settings, client: httpx.AsyncClient) -> LLMProvider:
    """Instantiate a provider by its configured name."""
    common = {"max_tokens": settings.LLM_MAX_TOKENS, "temperature": settings.LLM_TEMPERATURE}
    name = name.lower()
    if name == "groq":
        return GroqProvider(client, settings.GROQ_API_KEY, settings.GROQ_MODEL, settings.GROQ_BASE_URL, **common)
    if name == "gemini":
        return GeminiProvider(client, settings.GEMINI_API_KEY, settings.GEMINI_MODEL, settings.GEMINI_BASE_URL, **common)
    if name == "anthropic":
        return AnthropicProvider(client, settings.ANTHROPIC_API_KEY, settings.CLAUDE_MODEL, **common)
    raise ValueError(f"Unknown LLM provider: {name}")


class SlidingWindowLimiter:
    """Allows at most `max_per_minute` calls in any 60 second window; extra callers wait their turn."""

    def __init__(
        self,
        max_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_per_minute = max_per_minute
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self):
        async with self._lock:
            while True:
                now = self._clock()
                while self._calls and now - self._calls[0] >= 60:
                    self._calls.popleft()
                if len(self._calls) < self.max_per_minute:
                    self._calls.append(now)
                    return
                wait = 60 - (now - self._calls[0])
                logger.info(f"Request queued for {wait:.1f}s (rate limit)")
                await self._sleep(wait)


class LanguageModelGateway:
    def __init__(
        self,
        primary: LLMProvider,
        fallback: LLMProvider | None = None,
        retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 4.0,
        requests_per_minute: int = 0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.primary = primary
        self.fallback = fallback
        self.retries = retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep
        self._limiters = {}
        if requests_per_minute > 0:
            self._limiters = {
                p.name: SlidingWindowLimiter(requests_per_minute, sleep=sleep)
                for p in (primary, fallback) if p is not None
            }

    def _backoff(self, attempt: int, retry_after: float | None) -> float:
        if retry_after is not None:
            return min(retry_after, self.backoff_max)
        delay = self.backoff_base * (2 ** attempt) + random.uniform(0, self.backoff_base)
        return min(delay, self.backoff_max)

    async def _call(self, provider: LLMProvider, system_prompt: str, history: list[dict], message: str) -> str:
        """One provider, retrying only on rate limits."""
        attempt = 0
        while True:
            limiter = self._limiters.get(provider.name)
            if limiter is not None:
                await limiter.acquire()
            try:
                reply = await provider.complete(system_prompt, history, message)
            except RateLimited as e:
                if attempt >= self.retries:
                    raise
                delay = self._backoff(attempt, e.retry_after)
                logger.warning(f"{provider.name} rate limited, retry {attempt + 1}/{self.retries} in {delay:.2f}s")
                await self._sleep(delay)
                attempt += 1
                continue
            if not isinstance(reply, str) or not reply.strip():
                raise InvalidResponse(f"{provider.name} returned an empty reply")
            return reply.strip()

    async def generate(self, system_prompt: str, history: list[dict], message: str) -> str:
        """Reply text from the primary provider, else the fallback, else FALLBACK_REPLY. Never raises LLMError."""
        for provider in (self.primary, self.fallback):
            if provider is None:
                continue
            try:
                logger.info(f"Calling {provider.name} ({provider.model})")
                return await self._call(provider, system_prompt, history, message)
            except LLMError as e:
                logger.warning(f"{provider.name} failed: {e}")
        logger.error("All language model providers failed, sending fallback reply")
        return FALLBACK_REPLY
