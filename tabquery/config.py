"""
Runtime settings for tabquery.

Values come from ``TABQUERY_*`` environment variables with sensible
defaults, so the CLI, the API server and library callers share one source.
"""
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .logging_config import get_logger

logger = get_logger("tabquery.config")

DEFAULT_CHROME_PORT = 9222
DEFAULT_EDGE_PORT = 9223


def _port_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        port = int(raw)
    except ValueError:
        logger.info(f"Invalid port in {name}={raw!r}, using default port {default}")
        return default
    if not 0 < port < 65536:
        logger.info(f"Port out of range in {name}={raw!r}, using default port {default}")
        return default
    return port


@dataclass
class Settings:
    """Connection and bookkeeping settings."""
    chrome_port: int = DEFAULT_CHROME_PORT
    edge_port: int = DEFAULT_EDGE_PORT
    default_browser: str = ""  # "chrome" or "edge"; anything else means edge
    cdp_host: str = "127.0.0.1"
    probe_timeout: float = 5.0
    navigation_timeout_ms: int = 30000
    max_action_history: int = 200

    @classmethod
    def from_env(cls) -> "Settings":
        timeout_raw = os.environ.get("TABQUERY_PROBE_TIMEOUT", "")
        try:
            probe_timeout = float(timeout_raw) if timeout_raw else cls.probe_timeout
        except ValueError:
            probe_timeout = cls.probe_timeout
        return cls(
            chrome_port=_port_from_env("TABQUERY_CHROME_PORT", DEFAULT_CHROME_PORT),
            edge_port=_port_from_env("TABQUERY_EDGE_PORT", DEFAULT_EDGE_PORT),
            default_browser=os.environ.get("TABQUERY_DEFAULT_BROWSER", "").strip().lower(),
            cdp_host=os.environ.get("TABQUERY_CDP_HOST", "127.0.0.1"),
            probe_timeout=probe_timeout,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chrome_port": self.chrome_port,
            "edge_port": self.edge_port,
            "default_browser": self.default_browser,
            "cdp_host": self.cdp_host,
            "probe_timeout": self.probe_timeout,
            "navigation_timeout_ms": self.navigation_timeout_ms,
            "max_action_history": self.max_action_history,
        }


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings():
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
