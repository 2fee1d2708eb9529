import json

import httpx
import pytest

from assignmentor.llm_client import LLMClient, build_chat_prompt, build_generation_prompt
from assignmentor.settings import settings


def completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture(autouse=True)
def no_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "openrouter_api_key", None)


class TestLLMClient:
    @pytest.mark.asyncio
    async def test_complete_posts_chat_completion(self) -> None:
        """The prompt is sent as a single user message to /chat/completions."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=completion("# Essay"))

        client = LLMClient(
            api_key="k",
            base_url="https://llm.example/v1/",
            model="m",
            transport=httpx.MockTransport(handler),
        )
        try:
            text = await client.complete("Write it")
        finally:
            await client.aclose()

        assert text == "# Essay"
        assert str(seen[0].url) == "https://llm.example/v1/chat/completions"
        assert seen[0].headers["Authorization"] == "Bearer k"
        body = json.loads(seen[0].content)
        assert body == {"model": "m", "messages": [{"role": "user", "content": "Write it"}]}

    @pytest.mark.asyncio
    async def test_http_error_without_fallback_raises(self) -> None:
        """Upstream failures propagate when no fallback is configured."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))
        client = LLMClient(api_key="k", base_url="https://llm.example/v1", transport=transport)
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await client.complete("Write it")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_malformed_response_raises(self) -> None:
        """A body without choices is reported as an unexpected response."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"oops": True}))
        client = LLMClient(api_key="k", base_url="https://llm.example/v1", transport=transport)
        try:
            with pytest.raises(RuntimeError, match="Unexpected completion response"):
                await client.complete("Write it")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_falls_back_to_openrouter(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A failing primary call is retried once against OpenRouter."""
        monkeypatch.setattr(settings, "openrouter_api_key", "or-key")
        monkeypatch.setattr(settings, "openrouter_base_url", "https://router.example/chat")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "router.example":
                assert request.headers["Authorization"] == "Bearer or-key"
                return httpx.Response(200, json=completion("from fallback"))
            return httpx.Response(500)

        client = LLMClient(
            api_key="k",
            base_url="https://llm.example/v1",
            transport=httpx.MockTransport(handler),
        )
        try:
            assert await client.complete("Write it") == "from fallback"
        finally:
            await client.aclose()


class TestPrompts:
    def test_generation_prompt(self) -> None:
        """Topic, word limit and instruction are all included."""
        prompt = build_generation_prompt("Brand equity", "Write the essay", 800)

        assert '"Brand equity"' in prompt
        assert "800 words" in prompt
        assert "User Instruction: Write the essay" in prompt

    def test_generation_prompt_default_length(self) -> None:
        """Without a word limit the prompt asks for about 500 words."""
        assert "approx 500 words" in build_generation_prompt("T", "Go")

    def test_chat_prompt(self) -> None:
        """Chat prompts carry the assignment topic as context."""
        prompt = build_chat_prompt("Pricing", "Explain skimming")

        assert 'Context: Writing an assignment on "Pricing".' in prompt
        assert "User: Explain skimming" in prompt
