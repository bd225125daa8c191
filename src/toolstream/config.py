"""Configuration for toolstream.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./toolstream.yaml``
  3. ``~/.config/toolstream/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from toolstream.errors import ConfigurationError
from toolstream.types import LLMSettings, ProviderInfo

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Provider catalog
# ---------------------------------------------------------------------------

def _default_providers() -> dict[str, ProviderInfo]:
    entries = [
        ProviderInfo("openai", "OpenAI", "https://api.openai.com/v1"),
        ProviderInfo(
            "anthropic", "Anthropic", "https://api.anthropic.com/v1",
            family="anthropic",
        ),
        ProviderInfo(
            "mistral", "Mistral AI", "https://api.mistral.ai/v1",
            family="mistral",
        ),
        ProviderInfo("deepseek", "DeepSeek", "https://api.deepseek.com/v1"),
        ProviderInfo(
            "deepinfra", "DeepInfra", "https://api.deepinfra.com/v1/openai",
        ),
        ProviderInfo(
            "openrouter", "OpenRouter", "https://openrouter.ai/api/v1",
            extra_headers={
                "HTTP-Referer": "https://github.com/toolstream/toolstream",
                "X-Title": "toolstream",
            },
        ),
        ProviderInfo("requesty", "Requesty", "https://router.requesty.ai/v1"),
        ProviderInfo(
            "jan", "Jan", "http://localhost:1337/v1", requires_api_key=False,
        ),
        ProviderInfo(
            "lmstudio", "LM Studio", "http://localhost:1234/v1",
            requires_api_key=False, family="text",
        ),
        ProviderInfo(
            "llamacpp", "llama.cpp", "http://localhost:8080/v1",
            requires_api_key=False, family="text",
        ),
        ProviderInfo(
            "ollama", "Ollama", "http://localhost:11434",
            requires_api_key=False, family="ollama",
        ),
    ]
    return {p.id: p for p in entries}


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class ExecutionSpec:
    """Tool execution limits."""

    max_parallel_tools: int = 5
    timeout_ms: int = 30000
    retry_attempts: int = 2
    enable_deduplication: bool = True


@dataclass
class AgentSpec:
    """Agentic loop limits."""

    max_iterations: int = 8  # network round trips per send_message
    max_duration_s: float = 0  # 0 = no wall-clock budget
    emit_tool_status: bool = True


@dataclass
class TextParsingSpec:
    """Text-based tool call extraction options."""

    speculative_fallbacks: bool = False
    ignored_tags: list[str] = field(
        default_factory=lambda: [
            "think", "thinking", "reasoning", "answer",
            "tool_execution", "tool_result",
        ]
    )


@dataclass
class ToolstreamConfig:
    """Top-level config for toolstream."""

    providers: dict[str, ProviderInfo] = field(default_factory=_default_providers)
    api_keys: dict[str, str] = field(default_factory=dict)
    defaults: LLMSettings = field(default_factory=LLMSettings)
    execution: ExecutionSpec = field(default_factory=ExecutionSpec)
    agent: AgentSpec = field(default_factory=AgentSpec)
    text_parsing: TextParsingSpec = field(default_factory=TextParsingSpec)
    # Ollama models known to support native tool calling
    ollama_native_tool_models: list[str] = field(default_factory=list)

    def provider(self, provider_id: str) -> ProviderInfo:
        """Look up a provider by id.

        Raises
        ------
        ConfigurationError
            If the provider is not in the catalog.
        """
        try:
            return self.providers[provider_id]
        except KeyError:
            raise ConfigurationError(
                f"Unknown provider: {provider_id}. "
                f"Available: {', '.join(sorted(self.providers))}"
            ) from None

    def settings_for(
        self,
        provider_id: str | None = None,
        model: str | None = None,
    ) -> LLMSettings:
        """Build per-request settings from defaults plus overrides."""
        base = self.defaults
        pid = provider_id or base.provider
        is_default = pid == base.provider
        return LLMSettings(
            provider=pid,
            model=model or base.model,
            api_key=self.api_keys.get(pid) or (base.api_key if is_default else ""),
            base_url=base.base_url if is_default else "",
            temperature=base.temperature,
            max_tokens=base.max_tokens,
            system_prompt=base.system_prompt,
            tool_calling_enabled=base.tool_calling_enabled,
        )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./toolstream.yaml"),
    Path.home() / ".config" / "toolstream" / "config.yaml",
]


def _parse_providers(
    raw: dict[str, Any] | None,
) -> tuple[dict[str, ProviderInfo], dict[str, str]]:
    providers = _default_providers()
    keys: dict[str, str] = {}
    for pid, praw in (raw or {}).items():
        praw = praw or {}
        base = providers.get(pid, ProviderInfo(pid, name=pid))
        providers[pid] = ProviderInfo(
            id=pid,
            name=praw.get("name", base.name),
            base_url=praw.get("base_url", base.base_url),
            requires_api_key=praw.get("requires_api_key", base.requires_api_key),
            family=praw.get("family", base.family),
            extra_headers={**base.extra_headers, **praw.get("extra_headers", {})},
        )
        key = praw.get("api_key") or ""
        env_name = praw.get("api_key_env")
        if not key and env_name:
            key = os.environ.get(env_name, "")
            if not key:
                _logger.warning(
                    "Environment variable %s for provider %s is not set",
                    env_name, pid,
                )
        if key:
            keys[pid] = key
    return providers, keys


def _parse_section(cls: type, raw: dict[str, Any] | None) -> Any:
    if not raw:
        return cls()
    known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
    unknown = set(raw) - set(known)
    if unknown:
        _logger.warning(
            "Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)),
        )
    return cls(**known)


def load_config(path: str | Path | None = None) -> ToolstreamConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    ToolstreamConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return ToolstreamConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return ToolstreamConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config root must be a mapping: {config_path}")

    providers, keys = _parse_providers(raw.get("providers"))
    ollama = raw.get("ollama") or {}

    return ToolstreamConfig(
        providers=providers,
        api_keys=keys,
        defaults=_parse_section(LLMSettings, raw.get("defaults")),
        execution=_parse_section(ExecutionSpec, raw.get("execution")),
        agent=_parse_section(AgentSpec, raw.get("agent")),
        text_parsing=_parse_section(TextParsingSpec, raw.get("text_parsing")),
        ollama_native_tool_models=list(ollama.get("native_tool_models", [])),
    )
