"""Configuration for localgrok.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./localgrok.yaml``
  3. ``~/.config/localgrok/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from localgrok.types import TurnOptions

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerSpec:
    """Where the Ollama inference server lives."""

    host: str = "localhost"
    port: int = 11434
    scheme: str = "http"

    @property
    def is_configured(self) -> bool:
        return bool(self.host.strip())

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host.strip()}:{self.port}"


@dataclass(frozen=True)
class SearchSpec:
    """SearXNG endpoint used by the web search tool.

    A blank ``host`` means "same machine as the inference server";
    see :meth:`LocalGrokConfig.search_spec`.
    """

    host: str = ""
    port: int = 8888
    scheme: str = "http"
    enabled: bool = True

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.host.strip())

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host.strip()}:{self.port}"


@dataclass
class LocalGrokConfig:
    """Top-level config for localgrok."""

    server: ServerSpec = field(default_factory=ServerSpec)
    search: SearchSpec = field(default_factory=SearchSpec)

    model: str = "qwen3:0.6b-fp16"
    think: bool = True
    tools_enabled: bool = True

    # Continuation rounds allowed per user turn
    max_tool_rounds: int = 1

    # HTTP timeout (seconds) for non-streaming calls
    timeout: float = 120

    @property
    def search_spec(self) -> SearchSpec:
        """Search endpoint with the server host filled in when left blank."""
        if self.search.host.strip():
            return self.search
        return replace(self.search, host=self.server.host)

    def turn_options(self) -> TurnOptions:
        return TurnOptions(
            model=self.model,
            think=self.think,
            tools_enabled=self.tools_enabled,
            max_tool_rounds=self.max_tool_rounds,
        )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./localgrok.yaml"),
    Path.home() / ".config" / "localgrok" / "config.yaml",
]


def _parse_server(raw: dict[str, Any] | None) -> ServerSpec:
    if not raw:
        return ServerSpec()
    return ServerSpec(
        host=str(raw.get("host", "localhost") or ""),
        port=int(raw.get("port", 11434)),
        scheme=raw.get("scheme", "http"),
    )


def _parse_search(raw: dict[str, Any] | None) -> SearchSpec:
    if not raw:
        return SearchSpec()
    return SearchSpec(
        host=str(raw.get("host", "") or ""),
        port=int(raw.get("port", 8888)),
        scheme=raw.get("scheme", "http"),
        enabled=bool(raw.get("enabled", True)),
    )


def load_config(path: str | Path | None = None) -> LocalGrokConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    LocalGrokConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return LocalGrokConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return LocalGrokConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    defaults = LocalGrokConfig()
    return LocalGrokConfig(
        server=_parse_server(raw.get("server")),
        search=_parse_search(raw.get("search")),
        model=raw.get("model", defaults.model),
        think=bool(raw.get("think", defaults.think)),
        tools_enabled=bool(raw.get("tools_enabled", defaults.tools_enabled)),
        max_tool_rounds=int(raw.get("max_tool_rounds", defaults.max_tool_rounds)),
        timeout=float(raw.get("timeout", defaults.timeout)),
    )
