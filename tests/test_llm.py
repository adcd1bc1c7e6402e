import json

import httpx
import pytest

from storechat.config import Settings
from storechat.services.llm import (
    FALLBACK_REPLY,
    AnthropicProvider,
    GeminiProvider,
    GroqProvider,
    InvalidResponse,
    LanguageModelGateway,
    RateLimited,
    SlidingWindowLimiter,
    Unavailable,
    build_provider,
)
from tests.helpers import ScriptedProvider

HISTORY = [
    {"role": "user", "content": "hi"},
    {"role": "assistant", "content": "Hey! How's it going?"},
]


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


# --- Providers ---

@pytest.mark.asyncio
async def test_groq_request_and_reply():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Here! SHOW[ring|0|500]"}}]})

    async with mock_client(handler) as client:
        provider = GroqProvider(client, "gsk-test", "llama", "https://api.groq.com/openai/v1")
        reply = await provider.complete("SYSTEM", HISTORY, "rings under 500")

    assert reply == "Here! SHOW[ring|0|500]"
    assert seen["url"] == "https://api.groq.com/openai/v1/chat/completions"
    assert seen["auth"] == "Bearer gsk-test"
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user", "assistant", "user"]
    assert seen["body"]["messages"][-1]["content"] == "rings under 500"


@pytest.mark.asyncio
async def test_gemini_request_and_reply():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "there"}]}}]})

    async with mock_client(handler) as client:
        provider = GeminiProvider(client, "key", "gemini-2.0-flash", "https://example.test/v1beta")
        reply = await provider.complete("SYSTEM", HISTORY, "hello")

    assert reply == "Hello there"
    assert seen["url"] == "https://example.test/v1beta/models/gemini-2.0-flash:generateContent"
    assert seen["body"]["systemInstruction"]["parts"][0]["text"] == "SYSTEM"
    assert [c["role"] for c in seen["body"]["contents"]] == ["user", "model", "user"]


@pytest.mark.asyncio
async def test_anthropic_merges_consecutive_roles():
    seen = {}

    def handler(request: httpx.Request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "Sure!"}]})

    history = [{"role": "user", "content": "hi"}, {"role": "user", "content": "anyone?"}]
    async with mock_client(handler) as client:
        provider = AnthropicProvider(client, "key", "claude")
        reply = await provider.complete("SYSTEM", history, "rings")

    assert reply == "Sure!"
    assert seen["body"]["system"] == "SYSTEM"
    assert seen["body"]["messages"] == [{"role": "user", "content": "hi\nanyone?\nrings"}]


@pytest.mark.asyncio
async def test_provider_error_classification():
    responses = iter([
        httpx.Response(429, headers={"retry-after": "2"}),
        httpx.Response(503, text="overloaded"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"choices": []}),
    ])

    async with mock_client(lambda request: next(responses)) as client:
        provider = GroqProvider(client, "k", "m", "https://api.test")
        with pytest.raises(RateLimited) as rate_limited:
            await provider.complete("s", [], "m")
        assert rate_limited.value.retry_after == 2.0
        with pytest.raises(Unavailable):
            await provider.complete("s", [], "m")
        with pytest.raises(InvalidResponse):
            await provider.complete("s", [], "m")
        with pytest.raises(InvalidResponse):
            await provider.complete("s", [], "m")


@pytest.mark.asyncio
async def test_transport_errors_are_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with mock_client(handler) as client:
        provider = GeminiProvider(client, "k", "m", "https://api.test")
        with pytest.raises(Unavailable):
            await provider.complete("s", [], "m")


@pytest.mark.asyncio
async def test_malformed_bodies_are_invalid_responses():
    async def complete_with(provider_cls, body, *args):
        async with mock_client(lambda request: httpx.Response(200, json=body)) as client:
            return await provider_cls(client, "k", "m", *args).complete("s", [], "m")

    with pytest.raises(InvalidResponse):
        await complete_with(GeminiProvider, {"candidates": [{"content": {"parts": ["hello"]}}]}, "https://api.test")
    with pytest.raises(InvalidResponse):
        await complete_with(AnthropicProvider, {"content": ["hello"]})
    with pytest.raises(InvalidResponse):
        await complete_with(GroqProvider, {"choices": ["hello"]}, "https://api.test")


@pytest.mark.asyncio
async def test_decoding_errors_are_unavailable():
    def handler(request):
        raise httpx.DecodingError("bad gzip", request=request)

    async with mock_client(handler) as client:
        provider = GroqProvider(client, "k", "m", "https://api.test")
        with pytest.raises(Unavailable):
            await provider.complete("s", [], "m")


@pytest.mark.asyncio
async def test_malformed_primary_fails_over_then_apologises():
    def handler(request: httpx.Request):
        if "groq" in request.url.host:
            return httpx.Response(200, json={"choices": [{"message": {"content": ["not", "text"]}}]})
        return httpx.Response(200, json={"candidates": [{"content": {"parts": ["hello"]}}]})

    settings = Settings(LLM_PRIMARY_PROVIDER="groq", LLM_FALLBACK_PROVIDER="gemini")
    async with mock_client(handler) as client:
        gateway = LanguageModelGateway(
            build_provider("groq", settings, client),
            build_provider("gemini", settings, client),
            sleep=RecordingSleep(),
        )
        assert await gateway.generate("sys", HISTORY, "hi") == FALLBACK_REPLY


def test_build_provider_by_name():
    settings = Settings(GROQ_API_KEY="g", GEMINI_API_KEY="m", ANTHROPIC_API_KEY="a")
    client = httpx.AsyncClient()
    assert isinstance(build_provider("groq", settings, client), GroqProvider)
    assert isinstance(build_provider("Gemini", settings, client), GeminiProvider)
    assert isinstance(build_provider("anthropic", settings, client), AnthropicProvider)
    with pytest.raises(ValueError):
        build_provider("unknown", settings, client)


# --- Gateway policy ---

@pytest.mark.asyncio
async def test_failover_on_primary_error():
    primary = ScriptedProvider(Unavailable("down"), name="primary")
    fallback = ScriptedProvider("From the backup", name="backup")
    gateway = LanguageModelGateway(primary, fallback, sleep=RecordingSleep())

    assert await gateway.generate("sys", HISTORY, "hi") == "From the backup"
    assert len(primary.calls) == 1
    assert fallback.calls[0]["history"] == HISTORY


@pytest.mark.asyncio
async def test_rate_limit_retries_within_provider_with_backoff():
    sleep = RecordingSleep()
    primary = ScriptedProvider(RateLimited("429"), RateLimited("429"), "Finally", name="primary")
    fallback = ScriptedProvider("unused", name="backup")
    gateway = LanguageModelGateway(primary, fallback, retries=3, backoff_base=0.5, backoff_max=4.0, sleep=sleep)

    assert await gateway.generate("sys", [], "hi") == "Finally"
    assert fallback.calls == []
    assert len(sleep.delays) == 2
    assert 0.5 <= sleep.delays[0] <= 1.0
    assert 1.0 <= sleep.delays[1] <= 1.5


@pytest.mark.asyncio
async def test_backoff_is_capped_and_honours_retry_after():
    sleep = RecordingSleep()
    primary = ScriptedProvider(RateLimited("429", retry_after=30), RateLimited("429", retry_after=1), "ok", name="p")
    gateway = LanguageModelGateway(primary, None, retries=3, backoff_max=4.0, sleep=sleep)

    assert await gateway.generate("sys", [], "hi") == "ok"
    assert sleep.delays == [4.0, 1]


@pytest.mark.asyncio
async def test_exhausted_rate_limit_fails_over_once():
    primary = ScriptedProvider(*[RateLimited("429") for _ in range(3)], name="primary")
    fallback = ScriptedProvider("Backup answer", name="backup")
    gateway = LanguageModelGateway(primary, fallback, retries=2, sleep=RecordingSleep())

    assert await gateway.generate("sys", [], "hi") == "Backup answer"
    assert len(primary.calls) == 3


@pytest.mark.asyncio
async def test_non_rate_limit_errors_are_not_retried():
    primary = ScriptedProvider(Unavailable("500"), "never reached", name="primary")
    gateway = LanguageModelGateway(primary, None, sleep=RecordingSleep())

    assert await gateway.generate("sys", [], "hi") == FALLBACK_REPLY
    assert len(primary.calls) == 1


@pytest.mark.asyncio
async def test_empty_reply_counts_as_failure():
    primary = ScriptedProvider("   ", name="primary")
    fallback = ScriptedProvider("  Real answer  ", name="backup")
    gateway = LanguageModelGateway(primary, fallback, sleep=RecordingSleep())

    assert await gateway.generate("sys", [], "hi") == "Real answer"


@pytest.mark.asyncio
async def test_both_providers_failing_returns_apology():
    primary = ScriptedProvider(InvalidResponse("garbage"), name="primary")
    fallback = ScriptedProvider(Unavailable("down"), name="backup")
    gateway = LanguageModelGateway(primary, fallback, sleep=RecordingSleep())

    assert await gateway.generate("sys", [], "hi") == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_gateway_over_http_fails_over_to_gemini():
    def handler(request: httpx.Request):
        if "groq" in request.url.host:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Gemini here"}]}}]})

    settings = Settings(LLM_PRIMARY_PROVIDER="groq", LLM_FALLBACK_PROVIDER="gemini")
    async with mock_client(handler) as client:
        gateway = LanguageModelGateway(
            build_provider("groq", settings, client),
            build_provider("gemini", settings, client),
            sleep=RecordingSleep(),
        )
        assert await gateway.generate("sys", HISTORY, "hi") == "Gemini here"


# --- Client-side throttling ---

@pytest.mark.asyncio
async def test_sliding_window_limiter_waits_for_oldest_call():
    now = [0.0]
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)
        now[0] += delay

    limiter = SlidingWindowLimiter(2, clock=lambda: now[0], sleep=fake_sleep)
    await limiter.acquire()
    now[0] = 10
    await limiter.acquire()
    now[0] = 20
    await limiter.acquire()

    assert delays == [40]
    assert now[0] == 60


@pytest.mark.asyncio
async def test_gateway_applies_limiter_when_configured():
    sleep = RecordingSleep()
    primary = ScriptedProvider("a", "b", name="primary")
    gateway = LanguageModelGateway(primary, None, requests_per_minute=1, sleep=sleep)
    await gateway.generate("sys", [], "hi")
    assert "primary" in gateway._limiters
