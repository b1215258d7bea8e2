"""
Tests for the OpenAI adapter.

The SDK is replaced by a fake client exposing the same two methods as
OpenAIChatClient, returning SimpleNamespace objects shaped like the
SDK's ChatCompletion / ChatCompletionChunk.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from gateway.backends.clients import OpenAIChatClient
from gateway.backends.config import OpenAIBackendConfig
from gateway.backends.openai import OpenAIBackend, create_openai_backend
from gateway.contracts.models import create_request
from gateway.exceptions import BackendError, ConfigurationError


def _completion(content="Hello!", finish_reason="stop", tool_calls=None, usage=True):
    return SimpleNamespace(
        id="chatcmpl-1",
        choices=[SimpleNamespace(
            message=SimpleNamespace(content=content, tool_calls=tool_calls),
            finish_reason=finish_reason,
        )],
        usage=SimpleNamespace(
            prompt_tokens=12,
            completion_tokens=4,
            total_tokens=16,
            completion_tokens_details=None,
            prompt_tokens_details=SimpleNamespace(model_dump=lambda: {"cached_tokens": 8}),
        ) if usage else None,
    )


def _chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class FakeOpenAIClient:
    def __init__(self, completion=None, error=None, chunks=()):
        self.completion = completion or _completion()
        self.error = error
        self.chunks = list(chunks)
        self.calls: list[dict] = []

    async def complete(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.completion

    async def stream(self, **kwargs):
        self.calls.append(kwargs)
        for chunk in self.chunks:
            yield chunk


class StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def _backend(client, **config):
    return OpenAIBackend({"api_key": "sk-test", **config}, client=client)


class TestOpenAIGenerate:

    @pytest.mark.asyncio
    async def test_messages_order_and_metadata(self):
        client = FakeOpenAIClient()
        backend = _backend(client)
        request = create_request(
            prompt="And now?",
            system_prompt="Be brief.",
            history=[
                {"role": "user", "content": "Hi"},
                {"role": "tool", "content": {"result": 1}},
            ],
        )

        response = await backend.generate(request, routed_to="primary")

        assert client.calls[0]["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": '{"result": 1}'},
            {"role": "user", "content": "And now?"},
        ]
        assert response.output_text == "Hello!"
        assert response.finish_reason == "stop"
        assert response.request_id == request.id
        assert response.metadata["backend"] == "openai"
        assert response.metadata["model"] == "gpt-4o"
        assert response.metadata["routed_to"] == "primary"
        assert response.metadata["openai_id"] == "chatcmpl-1"

    @pytest.mark.asyncio
    async def test_usage_and_details(self):
        response = await _backend(FakeOpenAIClient()).generate(create_request(prompt="x"))
        assert response.usage.prompt_tokens == 12
        assert response.usage.completion_tokens == 4
        assert response.usage.total_tokens == 16
        assert response.usage.extra == {"prompt_tokens_details": {"cached_tokens": 8}}

    @pytest.mark.asyncio
    async def test_sampling_parameters_forwarded(self):
        client = FakeOpenAIClient()
        request = create_request(
            prompt="x",
            parameters={
                "model": "gpt-4o-mini",
                "temperature": 0.2,
                "maxTokens": 50,
                "stop": "END",
                "providerOptions": {"seed": 42},
            },
        )

        await _backend(client).generate(request)

        kwargs = client.calls[0]
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 50
        assert kwargs["stop"] == ["END"]
        assert kwargs["extra_body"] == {"seed": 42}
        assert "top_p" not in kwargs

    @pytest.mark.asyncio
    async def test_default_model_from_config(self):
        client = FakeOpenAIClient()
        await _backend(client, default_model="gpt-4.1").generate(create_request(prompt="x"))
        assert client.calls[0]["model"] == "gpt-4.1"

    @pytest.mark.asyncio
    async def test_tools_converted(self):
        client = FakeOpenAIClient()
        request = create_request(
            prompt="x",
            tools=[{"name": "lookup", "description": "Find", "parameters": {"type": "object"}}],
            parameters={"tool_choice": "auto"},
        )

        await _backend(client).generate(request)

        assert client.calls[0]["tools"] == [{
            "type": "function",
            "function": {"name": "lookup", "description": "Find", "parameters": {"type": "object"}},
        }]
        assert client.calls[0]["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_tool_calls_parsed(self):
        tool_call = SimpleNamespace(
            id="call_1",
            function=SimpleNamespace(name="lookup", arguments='{"q": "weather"}'),
        )
        client = FakeOpenAIClient(_completion(content=None, finish_reason="tool_calls", tool_calls=[tool_call]))

        response = await _backend(client).generate(create_request(prompt="x"))

        assert response.finish_reason == "stop"
        assert response.tool_calls[0].name == "lookup"
        assert response.tool_calls[0].arguments == {"q": "weather"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw,expected",
        [("length", "length"), ("content_filter", "content_filter"), ("mystery", "stop")],
    )
    async def test_finish_reason_mapping(self, raw, expected):
        client = FakeOpenAIClient(_completion(finish_reason=raw))
        response = await _backend(client).generate(create_request(prompt="x"))
        assert response.finish_reason == expected


class TestOpenAIFailures:

    @pytest.mark.asyncio
    async def test_provider_error_becomes_error_response(self):
        backend = _backend(FakeOpenAIClient(error=RuntimeError("boom")))
        request = create_request(prompt="x")

        response = await backend.generate(request)

        assert response.finish_reason == "error"
        assert response.output_text == ""
        assert response.metadata["error"] == "boom"
        assert response.metadata["backend"] == "openai"
        assert response.usage.total_tokens == 0

    @pytest.mark.asyncio
    async def test_no_choices_is_error_response(self):
        completion = _completion()
        completion.choices = []
        response = await _backend(FakeOpenAIClient(completion)).generate(create_request(prompt="x"))
        assert response.finish_reason == "error"
        assert "No completion choices" in response.metadata["error"]

    @pytest.mark.asyncio
    async def test_empty_completion_is_error(self):
        client = FakeOpenAIClient(_completion(content=""))
        response = await _backend(client).generate(create_request(prompt="x"))
        assert response.finish_reason == "error"
        assert response.output_text == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failures_raise(self, status):
        backend = _backend(FakeOpenAIClient(error=StatusError("denied", status)))
        with pytest.raises(BackendError) as exc_info:
            await backend.generate(create_request(prompt="x"))
        assert exc_info.value.context["status_code"] == status
        assert exc_info.value.context["backend"] == "openai"

    @pytest.mark.asyncio
    async def test_server_error_does_not_raise(self):
        backend = _backend(FakeOpenAIClient(error=StatusError("overloaded", 500)))
        response = await backend.generate(create_request(prompt="x"))
        assert response.finish_reason == "error"


class TestOpenAIStream:

    @pytest.mark.asyncio
    async def test_accumulates_non_empty_chunks(self):
        client = FakeOpenAIClient(chunks=[_chunk("Hel"), _chunk(None), _chunk("lo")])
        partials = [p async for p in _backend(client).generate_stream(create_request(prompt="x"))]

        assert [p.output_text for p in partials] == ["Hel", "Hello"]
        assert partials[-1].metadata["streaming"] is True
        assert partials[-1].metadata["backend"] == "openai"


class TestOpenAIConfig:

    def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            OpenAIBackend()

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        backend = create_openai_backend()
        assert backend.default_model == "gpt-4o"

    def test_unknown_option_rejected(self):
        with pytest.raises(ConfigurationError):
            OpenAIBackend({"api_key": "k", "temprature": 1})

    def test_azure_detection(self):
        cfg = OpenAIBackendConfig(
            api_key="k", azure_endpoint="https://x.openai.azure.com", azure_api_version="2024-06-01"
        )
        assert cfg.is_azure
        assert isinstance(OpenAIChatClient.from_config(cfg), OpenAIChatClient)
