"""Tests for config loading and the provider catalog."""

from __future__ import annotations

from pathlib import Path

import pytest

from toolstream.config import ToolstreamConfig, load_config
from toolstream.errors import ConfigurationError


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "toolstream.yaml"
    path.write_text(text)
    return path


class TestDefaults:
    def test_catalog(self):
        config = ToolstreamConfig()
        assert {"openai", "anthropic", "mistral", "ollama", "lmstudio", "llamacpp"} <= set(config.providers)
        assert config.providers["ollama"].family == "ollama"
        assert config.providers["lmstudio"].family == "text"
        assert config.providers["mistral"].family == "mistral"
        assert not config.providers["ollama"].requires_api_key

    def test_limits(self):
        config = ToolstreamConfig()
        assert config.execution.max_parallel_tools == 5
        assert config.execution.timeout_ms == 30000
        assert config.execution.enable_deduplication
        assert config.agent.max_iterations == 8
        assert not config.text_parsing.speculative_fallbacks

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unknown provider: nope"):
            ToolstreamConfig().provider("nope")

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.defaults.provider == "ollama"


class TestLoadConfig:
    def test_full_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TS_TEST_OPENAI_KEY", "sk-from-env")
        path = _write(tmp_path, """
defaults:
  provider: openai
  model: gpt-4o-mini
  temperature: 0.2
  system_prompt: Be brief.
providers:
  openai:
    api_key_env: TS_TEST_OPENAI_KEY
  mistral:
    api_key: mk-inline
  vllm:
    name: vLLM
    base_url: http://gpu:8000/v1
    requires_api_key: false
execution:
  max_parallel_tools: 2
  timeout_ms: 1000
agent:
  max_iterations: 4
text_parsing:
  speculative_fallbacks: true
ollama:
  native_tool_models: [qwen3, llama3.1]
""")
        config = load_config(path)

        assert config.defaults.model == "gpt-4o-mini"
        assert config.defaults.temperature == 0.2
        assert config.api_keys == {"openai": "sk-from-env", "mistral": "mk-inline"}
        assert config.providers["vllm"].base_url == "http://gpu:8000/v1"
        assert config.providers["vllm"].family == "openai"
        assert config.providers["openai"].base_url == "https://api.openai.com/v1"
        assert config.execution.max_parallel_tools == 2
        assert config.execution.timeout_ms == 1000
        assert config.agent.max_iterations == 4
        assert config.text_parsing.speculative_fallbacks
        assert config.ollama_native_tool_models == ["qwen3", "llama3.1"]

    def test_unset_env_key(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TS_TEST_MISSING", raising=False)
        path = _write(tmp_path, "providers:\n  openai:\n    api_key_env: TS_TEST_MISSING\n")
        assert load_config(path).api_keys == {}

    def test_unknown_keys_ignored(self, tmp_path):
        path = _write(tmp_path, "execution:\n  max_parallel_tools: 3\n  turbo: true\n")
        assert load_config(path).execution.max_parallel_tools == 3

    def test_empty_file(self, tmp_path):
        config = load_config(_write(tmp_path, ""))
        assert config.agent.max_iterations == 8

    def test_non_mapping_root(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(_write(tmp_path, "- a\n- b\n"))

    def test_search_path(self, tmp_path, monkeypatch):
        _write(tmp_path, "defaults:\n  model: from-cwd\n")
        monkeypatch.chdir(tmp_path)
        assert load_config().defaults.model == "from-cwd"


class TestSettingsFor:
    def test_default_provider(self):
        config = ToolstreamConfig()
        config.defaults.provider = "openai"
        config.defaults.model = "gpt-4o"
        config.api_keys["openai"] = "sk-1"
        settings = config.settings_for()
        assert (settings.provider, settings.model, settings.api_key) == ("openai", "gpt-4o", "sk-1")

    def test_overrides(self):
        config = ToolstreamConfig()
        config.defaults.base_url = "http://custom:11434"
        config.api_keys["mistral"] = "mk"
        settings = config.settings_for("mistral", "mistral-small")
        assert settings.provider == "mistral"
        assert settings.model == "mistral-small"
        assert settings.api_key == "mk"
        assert settings.base_url == ""
