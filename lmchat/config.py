"""
Layered configuration.

Sources are applied in order, each overriding the previous one::

    built-in defaults
      -> YAML file (``lmchat.yaml``)
      -> named profile from that file
      -> ``LMCHAT_*`` environment variables
      -> CLI flags
      -> per-session overrides set at runtime
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

PROVIDER_NAMES = ("lmstudio", "ollama")


@dataclass
class LLMProviderConfig:
    name: str = "lmstudio"
    url: str = "http://localhost:1234/v1"
    model: str = ""
    api_key_env: str = "LMCHAT_API_KEY"
    max_context_tokens: int = 8_192
    max_output_tokens: int = 2_000
    temperature: float = 0.7
    timeout_seconds: int = 60
    max_retries: int = 0
    tokenizer: str = ""


@dataclass
class ToolsConfig:
    enabled: bool = True
    builtin: list[str] = field(default_factory=lambda: ["add", "multiply", "getCurrentTime"])
    disabled: list[str] = field(default_factory=list)
    timeout_seconds: float = 30.0
    max_passes: int = 8


@dataclass
class PluginsConfig:
    enabled: bool = False
    allow_distributions: list[str] = field(default_factory=list)
    allow_functions: list[str] = field(default_factory=list)


@dataclass
class SessionConfig:
    system_prompt: str = (
        "You are a helpful assistant embedded in a desktop mail client. "
        "Answer concisely and use the available functions when they help."
    )
    reserve_tokens: int = 200


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = ""


_SECTIONS: dict[str, type] = {
    "llm": LLMProviderConfig,
    "tools": ToolsConfig,
    "plugins": PluginsConfig,
    "session": SessionConfig,
    "logging": LoggingConfig,
}


@dataclass
class LMChatConfig:
    llm: LLMProviderConfig = field(default_factory=LLMProviderConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    plugins: PluginsConfig = field(default_factory=PluginsConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Override a single value for this process, e.g. ``'llm.model'``."""
        _set_dotpath(self, dotpath, value)
        self._overrides[dotpath] = value

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        del d["_overrides"]
        return d

    def problems(self) -> list[str]:
        """Return human-readable reasons this config cannot be used."""
        found = []
        if self.llm.name not in PROVIDER_NAMES:
            found.append(
                f"Unknown provider: {self.llm.name} (expected one of {', '.join(PROVIDER_NAMES)})"
            )
        if self.llm.max_output_tokens >= self.llm.max_context_tokens:
            found.append("llm.max_output_tokens must be smaller than llm.max_context_tokens")
        if self.tools.max_passes < 1:
            found.append("tools.max_passes must be at least 1")
        if self.tools.timeout_seconds <= 0:
            found.append("tools.timeout_seconds must be positive")
        if self.session.reserve_tokens < 0:
            found.append("session.reserve_tokens cannot be negative")
        if getattr(logging, self.logging.level.upper(), None) is None:
            found.append(f"Unknown log level: {self.logging.level}")
        return found


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "LMCHAT_LLM_NAME": ("llm.name", str),
    "LMCHAT_LLM_URL": ("llm.url", str),
    "LMCHAT_LLM_MODEL": ("llm.model", str),
    "LMCHAT_LLM_MAX_CONTEXT": ("llm.max_context_tokens", int),
    "LMCHAT_LLM_MAX_OUTPUT": ("llm.max_output_tokens", int),
    "LMCHAT_LLM_TEMPERATURE": ("llm.temperature", float),
    "LMCHAT_LLM_TIMEOUT": ("llm.timeout_seconds", int),
    "LMCHAT_LLM_MAX_RETRIES": ("llm.max_retries", int),
    "LMCHAT_LLM_TOKENIZER": ("llm.tokenizer", str),
    "LMCHAT_TOOLS_ENABLED": ("tools.enabled", bool),
    "LMCHAT_TOOLS_DISABLED": ("tools.disabled", list),
    "LMCHAT_TOOLS_TIMEOUT": ("tools.timeout_seconds", float),
    "LMCHAT_TOOLS_MAX_PASSES": ("tools.max_passes", int),
    "LMCHAT_PLUGINS_ENABLED": ("plugins.enabled", bool),
    "LMCHAT_SESSION_PROMPT": ("session.system_prompt", str),
    "LMCHAT_LOG_LEVEL": ("logging.level", str),
    "LMCHAT_LOG_FILE": ("logging.file", str),
}

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})


def _from_env(raw: str, kind: type) -> Any:
    if kind is bool:
        return raw.strip().lower() in _TRUE_WORDS
    if kind is list:
        return [part.strip() for part in raw.split(",") if part.strip()]
    return kind(raw)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _set_dotpath(cfg: LMChatConfig, dotpath: str, value: Any) -> None:
    section_name, _, key = dotpath.partition(".")
    section = getattr(cfg, section_name, None)
    if section_name not in _SECTIONS or not key or not hasattr(section, key):
        raise KeyError(f"Unknown config key: {dotpath}")
    setattr(section, key, value)


def _overlay(base: dict, top: dict) -> dict:
    out = dict(base)
    for key, value in top.items():
        below = out.get(key)
        out[key] = _overlay(below, value) if isinstance(below, dict) and isinstance(value, dict) else value
    return out


def _section(name: str, raw: Any) -> Any:
    cls = _SECTIONS[name]
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"Config section {name!r} must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning("Ignoring unknown keys in [%s]: %s", name, ", ".join(unknown))
    return cls(**{k: v for k, v in raw.items() if k in known})


def _read_yaml(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> LMChatConfig:
    """
    Build the effective configuration.

    Parameters
    ----------
    config_path:
        YAML file to read.  A missing file is not an error.
    profile:
        Name of an entry under ``profiles:`` in the file, merged over the
        file's top-level sections.  Raises ``ValueError`` if it is not
        defined.
    cli_overrides:
        ``{"section.key": value}`` pairs applied after the environment.
    """
    raw: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path).expanduser()
        if path.is_file():
            raw = _read_yaml(path)
            logger.debug("Loaded config from %s", path)

    profiles = raw.get("profiles") or {}
    if profile:
        if profile not in profiles:
            raise ValueError(f"Unknown profile: {profile}")
        raw = _overlay(raw, profiles[profile])

    cfg = LMChatConfig(
        **{name: _section(name, raw.get(name)) for name in _SECTIONS},
        profiles=profiles,
    )

    for var, (dotpath, kind) in _ENV_MAP.items():
        value = os.environ.get(var)
        if value is not None:
            _set_dotpath(cfg, dotpath, _from_env(value, kind))

    for dotpath, value in (cli_overrides or {}).items():
        _set_dotpath(cfg, dotpath, value)

    return cfg
