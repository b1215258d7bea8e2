"""
Tests for the gateway YAML loader and the builders behind it.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from gateway.backends import AnthropicBackend, MultiProviderBackend, OllamaBackend, OpenAIBackend
from gateway.cache.disk import DiskCache
from gateway.cache.layered import LayeredCache
from gateway.cache.memory import MemoryCache
from gateway.config.loader import (
    build_backends,
    build_cache,
    build_pipeline,
    find_config_path,
    load_gateway_config,
    parse_gateway_config,
)
from gateway.config.schema import BackendType, CacheType
from gateway.exceptions import ConfigurationError
from gateway.pipeline import LoggingInstrumentation

FULL_CONFIG = """
default_backend: claude
backends:
  gpt:
    type: openai
    config: {api_key: sk-test, default_model: gpt-4o-mini}
  claude:
    type: anthropic
    config: {api_key: sk-ant-test}
  local:
    type: ollama
  multi:
    type: multi-provider
    config:
      default_model: "anthropic:claude-3-haiku"
      rate_limit_ms: 250
cache:
  type: memory
  ttl: 600
  memory: {max_entries: 50}
default_parameters:
  temperature: 0.2
instrumentation: logging
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "gateway.yaml"
    path.write_text(FULL_CONFIG)
    return path


class TestLoadGatewayConfig:

    def test_loads_full_file(self, config_file):
        config = load_gateway_config(config_file)

        assert config.default_backend == "claude"
        assert config.backends["multi"].type == BackendType.MULTI_PROVIDER
        assert config.backends["local"].config == {}
        assert config.cache.type == CacheType.MEMORY
        assert config.cache.ttl == 600
        assert config.default_parameters == {"temperature": 0.2}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_gateway_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ConfigurationError):
            load_gateway_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_gateway_config(path)

    def test_env_var_path(self, config_file, monkeypatch):
        monkeypatch.setenv("GATEWAY_CONFIG", str(config_file))
        assert find_config_path() == config_file
        assert load_gateway_config().default_backend == "claude"

    def test_example_config_parses(self):
        example = Path(__file__).resolve().parents[1] / "gateway.example.yaml"
        config = load_gateway_config(example)

        assert config.default_backend == "openai"
        assert config.cache.type == CacheType.LAYERED
        assert set(config.backends) == {"openai", "claude", "local", "multi"}


class TestSchemaValidation:

    def test_default_backend_falls_back_to_first(self):
        config = parse_gateway_config({"backends": {"a": {"type": "ollama"}, "b": {"type": "ollama"}}})
        assert config.default_backend == "a"

    def test_unknown_default_backend(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_gateway_config({"backends": {"a": {"type": "ollama"}}, "default_backend": "z"})
        assert "default_backend" in str(exc_info.value)

    def test_no_backends(self):
        with pytest.raises(ConfigurationError):
            parse_gateway_config({"backends": {}})

    def test_unknown_backend_type(self):
        with pytest.raises(ConfigurationError):
            parse_gateway_config({"backends": {"a": {"type": "cohere"}}})

    def test_negative_ttl(self):
        with pytest.raises(ConfigurationError):
            parse_gateway_config({"backends": {"a": {"type": "ollama"}}, "cache": {"ttl": -1}})


class TestBuilders:

    def test_build_backends(self, config_file):
        backends = build_backends(load_gateway_config(config_file))

        assert isinstance(backends["gpt"], OpenAIBackend)
        assert backends["gpt"].default_model == "gpt-4o-mini"
        assert isinstance(backends["claude"], AnthropicBackend)
        assert isinstance(backends["local"], OllamaBackend)
        assert isinstance(backends["multi"], MultiProviderBackend)
        assert backends["multi"].queue.rate_limit_ms == 250

    def test_backend_config_errors_surface(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = parse_gateway_config({"backends": {"gpt": {"type": "openai"}}})
        with pytest.raises(ConfigurationError):
            build_backends(config)

    @pytest.mark.parametrize(
        "cache,expected",
        [
            ({"type": "none"}, type(None)),
            ({"type": "memory", "memory": {"max_entries": 5}}, MemoryCache),
            ({"type": "disk"}, DiskCache),
            ({"type": "layered", "promote_on_hit": False}, LayeredCache),
        ],
    )
    def test_build_cache(self, cache, expected, tmp_path):
        if cache["type"] in ("disk", "layered"):
            cache["disk"] = {"path": str(tmp_path / "c.sqlite")}
        config = parse_gateway_config({"backends": {"a": {"type": "ollama"}}, "cache": cache})

        built = build_cache(config)

        assert isinstance(built, expected)
        if isinstance(built, LayeredCache):
            assert built.config.promote_on_hit is False
        if built is not None and hasattr(built, "close"):
            built.close()

    def test_build_pipeline(self, config_file):
        pipeline = build_pipeline(load_gateway_config(config_file))

        assert set(pipeline.backends) == {"gpt", "claude", "local", "multi"}
        assert pipeline.router.default == "claude"
        assert isinstance(pipeline.cache, MemoryCache)
        assert pipeline.cache.config.max_entries == 50
        assert pipeline.cache_ttl == 600
        assert pipeline.canonicalizer.default_parameters == {"temperature": 0.2}
        assert isinstance(pipeline.instrumentation, LoggingInstrumentation)

    def test_build_pipeline_reuses_given_backends(self, config_file):
        sentinel = object()
        pipeline = build_pipeline(load_gateway_config(config_file), backends={"claude": sentinel})
        assert pipeline.backends == {"claude": sentinel}
