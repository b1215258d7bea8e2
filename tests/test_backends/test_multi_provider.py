"""
Tests for the multi-provider adapter: routing, tool repair, strict
finish reasons and the rate-limited request queue.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from gateway.backends.base import ModelCall, ModelResult
from gateway.backends.multi import EMPTY_COMPLETION_TEXT, MultiProviderBackend
from gateway.backends.registry import ProviderRegistry, RequestQueue
from gateway.contracts.models import ToolCall, Usage, create_request
from gateway.exceptions import BackendError, ConfigurationError


class FakeDriver:
    """Records every call with a monotonic timestamp."""

    def __init__(self, provider, result=None, error=None, chunks=()):
        self.provider = provider
        self.result = result
        self.error = error
        self.chunks = list(chunks)
        self.calls: list[ModelCall] = []
        self.timestamps: list[float] = []

    async def complete(self, call: ModelCall) -> ModelResult:
        self.calls.append(call)
        self.timestamps.append(time.monotonic())
        if self.error:
            error, self.error = self.error, None
            raise error
        return self.result or ModelResult(
            text=f"from {self.provider}",
            finish_reason="stop",
            usage=Usage(prompt_tokens=5, completion_tokens=2),
        )

    async def stream(self, call: ModelCall):
        self.calls.append(call)
        for chunk in self.chunks:
            yield chunk


def _backend(drivers: dict[str, FakeDriver], **config):
    factories = {name: (lambda cfg, d=driver: d) for name, driver in drivers.items()}
    return MultiProviderBackend(config or None, factories=factories)


class TestRouting:

    @pytest.mark.asyncio
    async def test_routes_by_provider_prefix(self):
        openai, anthropic = FakeDriver("openai"), FakeDriver("anthropic")
        backend = _backend({"openai": openai, "anthropic": anthropic})
        request = create_request(prompt="hi", parameters={"model": "anthropic:claude-3-haiku"})

        response = await backend.generate(request)

        assert response.output_text == "from anthropic"
        assert anthropic.calls[0].model == "claude-3-haiku"
        assert openai.calls == []
        assert response.metadata["backend"] == "multi-provider"
        assert response.metadata["provider"] == "anthropic"
        assert response.metadata["model"] == "anthropic:claude-3-haiku"
        assert response.metadata["routed_to"] == "direct"

    @pytest.mark.asyncio
    async def test_bare_model_gets_default_prefix(self):
        ollama = FakeDriver("ollama")
        backend = _backend({"ollama": ollama}, default_model="ollama:llama3.2")

        response = await backend.generate(create_request(prompt="hi", parameters={"modelId": "qwen2.5"}))

        assert ollama.calls[0].model == "qwen2.5"
        assert response.metadata["model"] == "ollama:qwen2.5"

    @pytest.mark.asyncio
    async def test_default_model_used_without_parameter(self):
        openai = FakeDriver("openai")
        response = await _backend({"openai": openai}).generate(create_request(prompt="hi"))
        assert openai.calls[0].model == "gpt-4o"
        assert response.metadata["provider"] == "openai"

    @pytest.mark.asyncio
    async def test_custom_separator(self):
        google = FakeDriver("google")
        backend = _backend({"google": google}, default_model="google/gemini-2.0-flash", separator="/")
        response = await backend.generate(create_request(prompt="hi"))
        assert google.calls[0].model == "gemini-2.0-flash"
        assert response.metadata["provider"] == "google"

    @pytest.mark.asyncio
    async def test_unknown_request_provider_returns_error_response(self):
        openai = FakeDriver("openai")
        backend = _backend({"openai": openai})

        response = await backend.generate(
            create_request(prompt="hi", parameters={"model": "mistral:large"})
        )

        assert response.finish_reason == "error"
        assert response.output_text == ""
        assert response.metadata["provider"] == "mistral"
        assert response.metadata["model"] == "mistral:large"
        assert response.metadata["error_type"] == "ConfigurationError"
        assert "mistral" in response.metadata["error"]
        assert openai.calls == []

    @pytest.mark.asyncio
    async def test_malformed_request_model_returns_error_response(self):
        backend = _backend({"openai": FakeDriver("openai")})
        response = await backend.generate(create_request(prompt="hi", parameters={"model": "openai:"}))
        assert response.finish_reason == "error"
        assert response.metadata["provider"] == "openai"

    @pytest.mark.asyncio
    async def test_unknown_default_provider_still_raises(self):
        backend = _backend({"openai": FakeDriver("openai")}, default_model="mistral:large")
        with pytest.raises(ConfigurationError):
            await backend.generate(create_request(prompt="hi"))
        with pytest.raises(ConfigurationError):
            await backend.generate(create_request(prompt="hi", parameters={"model": "small"}))

    @pytest.mark.asyncio
    async def test_messages_in_order(self):
        openai = FakeDriver("openai")
        request = create_request(
            prompt="now",
            system_prompt="sys",
            history=[{"role": "user", "content": "before"}],
        )
        await _backend({"openai": openai}).generate(request)
        assert [m["role"] for m in openai.calls[0].messages] == ["system", "user", "user"]
        assert [m["content"] for m in openai.calls[0].messages] == ["sys", "before", "now"]


class TestRegistry:

    def test_lazy_build_and_reuse(self):
        built = []

        def factory(cfg):
            built.append(cfg)
            return FakeDriver("openai")

        registry = ProviderRegistry({"openai": factory}, {"openai": {"api_key": "k"}})
        assert built == []

        first = registry.get("openai")
        second = registry.get("openai")

        assert first is second
        assert built == [{"api_key": "k"}]
        assert "openai" in registry
        assert registry.providers == ["openai"]

    @pytest.mark.parametrize("model_id", ["no-separator", ":model", "openai:"])
    def test_malformed_ids(self, model_id):
        registry = ProviderRegistry({"openai": lambda cfg: FakeDriver("openai")})
        with pytest.raises(ConfigurationError):
            registry.split(model_id)

    def test_split_keeps_later_separators(self):
        registry = ProviderRegistry({})
        assert registry.split("ollama:llama3.2:8b") == ("ollama", "llama3.2:8b")


class TestToolPreparation:

    @pytest.mark.asyncio
    async def test_tool_names_sanitized_and_reported(self):
        openai = FakeDriver("openai")
        request = create_request(
            prompt="use tools",
            tools=[
                {"name": "My Tool!!", "description": "d", "parameters": {"type": "object", "properties": {}}},
                {"name": "search", "parameters": {"type": "array"}},
            ],
        )

        response = await _backend({"openai": openai}).generate(request)

        sent = openai.calls[0].tools
        assert sent[0]["name"] == "My_Tool__"
        assert sent[1]["parameters"]["items"] == {"type": "string"}
        actions = [(r["tool"], r["action"]) for r in response.metadata["tool_repairs"]]
        assert ("My Tool!!", "renamed") in actions
        assert ("search", "schema_repaired") in actions

    @pytest.mark.asyncio
    async def test_tool_calls_carry_original_names(self):
        driver = FakeDriver("openai", result=ModelResult(
            finish_reason="tool_calls",
            tool_calls=[
                ToolCall(id="c1", name="My_Tool__", arguments={"q": "x"}),
                ToolCall(id="c2", name="search", arguments={}),
            ],
        ))
        request = create_request(
            prompt="use tools",
            tools=[
                {"name": "My Tool!!", "parameters": {"type": "object", "properties": {}}},
                {"name": "search", "parameters": {"type": "object", "properties": {}}},
            ],
        )

        response = await _backend({"openai": driver}).generate(request)

        assert [c.name for c in response.tool_calls] == ["My Tool!!", "search"]
        assert response.tool_calls[0].arguments == {"q": "x"}

    @pytest.mark.asyncio
    async def test_clean_tools_leave_no_repairs(self):
        openai = FakeDriver("openai")
        request = create_request(
            prompt="x",
            tools=[{"name": "ok_tool", "parameters": {"type": "object", "properties": {}}}],
        )
        response = await _backend({"openai": openai}).generate(request)
        assert "tool_repairs" not in response.metadata


class TestStrictFinishReasons:

    @pytest.mark.asyncio
    async def test_unknown_reason_is_error(self):
        driver = FakeDriver("openai", result=ModelResult(text="partial", finish_reason="weird"))
        response = await _backend({"openai": driver}).generate(create_request(prompt="x"))
        assert response.finish_reason == "error"
        assert response.output_text == "partial"

    @pytest.mark.asyncio
    async def test_hyphenated_reasons(self):
        driver = FakeDriver("openai", result=ModelResult(text="x", finish_reason="content-filter"))
        response = await _backend({"openai": driver}).generate(create_request(prompt="x"))
        assert response.finish_reason == "content_filter"

    @pytest.mark.asyncio
    async def test_tool_calls_without_text(self):
        driver = FakeDriver("anthropic", result=ModelResult(
            finish_reason="tool_use",
            tool_calls=[ToolCall(id="t1", name="lookup", arguments={})],
        ))
        backend = _backend({"anthropic": driver}, default_model="anthropic:claude-3-haiku")
        response = await backend.generate(create_request(prompt="x"))
        assert response.finish_reason == "tool_calls"

    @pytest.mark.asyncio
    async def test_empty_output_gets_placeholder(self):
        driver = FakeDriver("openai", result=ModelResult(text="", finish_reason="stop"))
        response = await _backend({"openai": driver}).generate(create_request(prompt="x"))
        assert response.finish_reason == "error"
        assert response.output_text == EMPTY_COMPLETION_TEXT

    @pytest.mark.asyncio
    async def test_driver_failure(self):
        driver = FakeDriver("openai", error=RuntimeError("boom"))
        response = await _backend({"openai": driver}).generate(create_request(prompt="x"))
        assert response.finish_reason == "error"
        assert response.metadata["error"] == "boom"
        assert response.metadata["provider"] == "openai"

    @pytest.mark.asyncio
    async def test_auth_failure_raises(self):
        err = RuntimeError("bad key")
        err.status_code = 401
        driver = FakeDriver("openai", error=err)
        with pytest.raises(BackendError):
            await _backend({"openai": driver}).generate(create_request(prompt="x"))


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_calls_spaced_by_rate_limit(self):
        openai = FakeDriver("openai")
        backend = _backend({"openai": openai}, rate_limit_ms=500)

        await asyncio.gather(
            backend.generate(create_request(prompt="one")),
            backend.generate(create_request(prompt="two")),
        )

        first, second = openai.timestamps
        assert second - first >= 0.49

    @pytest.mark.asyncio
    async def test_failure_does_not_block_queue(self):
        openai = FakeDriver("openai", error=RuntimeError("first fails"))
        backend = _backend({"openai": openai}, rate_limit_ms=200)

        first, second = await asyncio.gather(
            backend.generate(create_request(prompt="one")),
            backend.generate(create_request(prompt="two")),
        )

        assert first.finish_reason == "error"
        assert second.output_text == "from openai"
        gap = openai.timestamps[1] - openai.timestamps[0]
        assert 0.19 <= gap < 0.4

    @pytest.mark.asyncio
    async def test_latency_excludes_queue_wait(self):
        openai = FakeDriver("openai")
        backend = _backend({"openai": openai}, rate_limit_ms=500)

        first, second = await asyncio.gather(
            backend.generate(create_request(prompt="one")),
            backend.generate(create_request(prompt="two")),
        )

        assert openai.timestamps[1] - openai.timestamps[0] >= 0.49
        assert first.latency_ms < 100
        assert second.latency_ms < 100

    @pytest.mark.asyncio
    async def test_queue_is_fifo_with_fake_clock(self):
        now = [100.0]
        sleeps: list[float] = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        queue = RequestQueue(200, clock=lambda: now[0], sleep=fake_sleep)
        order = []

        async def job(n):
            order.append(n)
            return n

        results = await asyncio.gather(*(queue.run(lambda n=n: job(n)) for n in range(3)))

        assert results == [0, 1, 2]
        assert order == [0, 1, 2]
        assert sleeps == [pytest.approx(0.2), pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_no_limit_no_sleep(self):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        queue = RequestQueue(0, sleep=fake_sleep)
        await queue.run(lambda: asyncio.sleep(0))
        await queue.wait_turn()
        assert sleeps == []


class TestMultiStream:

    @pytest.mark.asyncio
    async def test_stream_metadata(self):
        anthropic = FakeDriver("anthropic", chunks=["a", "b"])
        backend = _backend({"anthropic": anthropic}, default_model="anthropic:claude-3-haiku")

        partials = [p async for p in backend.generate_stream(create_request(prompt="x"), routed_to="multi")]

        assert partials[-1].output_text == "ab"
        assert partials[-1].metadata["provider"] == "anthropic"
        assert partials[-1].metadata["routed_to"] == "multi"
