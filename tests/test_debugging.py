import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from tabquery.browser.debugging import default_browser, endpoint_url, probe_endpoint, resolve_port
from tabquery.browser.errors import DebuggerUnavailableError
from tabquery.browser.models import BrowserKind
from tabquery.config import Settings, get_settings, reset_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("TABQUERY_CHROME_PORT", "TABQUERY_EDGE_PORT", "TABQUERY_DEFAULT_BROWSER",
                 "TABQUERY_CDP_HOST", "TABQUERY_PROBE_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield monkeypatch
    reset_settings()


class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings.from_env()
        assert settings.chrome_port == 9222
        assert settings.edge_port == 9223
        assert settings.cdp_host == "127.0.0.1"

    def test_env_overrides(self, clean_env):
        clean_env.setenv("TABQUERY_CHROME_PORT", "9333")
        clean_env.setenv("TABQUERY_DEFAULT_BROWSER", "Chrome")
        settings = Settings.from_env()
        assert settings.chrome_port == 9333
        assert settings.default_browser == "chrome"

    def test_invalid_port_falls_back(self, clean_env):
        clean_env.setenv("TABQUERY_EDGE_PORT", "not-a-port")
        clean_env.setenv("TABQUERY_CHROME_PORT", "70000")
        settings = Settings.from_env()
        assert settings.edge_port == 9223
        assert settings.chrome_port == 9222

    def test_get_settings_is_cached(self, clean_env):
        assert get_settings() is get_settings()


class TestResolvePort:
    def test_explicit_browser(self):
        settings = Settings(chrome_port=1111, edge_port=2222)
        assert resolve_port(BrowserKind.CHROME, settings) == 1111
        assert resolve_port(BrowserKind.EDGE, settings) == 2222

    def test_default_browser_is_edge(self):
        settings = Settings(default_browser="")
        assert default_browser(settings) is BrowserKind.EDGE
        assert resolve_port(None, settings) == 9223

    def test_default_browser_chrome(self):
        settings = Settings(default_browser="google chrome")
        assert resolve_port(None, settings) == 9222

    def test_endpoint_url(self):
        assert endpoint_url("127.0.0.1", 9222) == "http://127.0.0.1:9222"


class TestProbeEndpoint:
    def _response(self, payload):
        resp = MagicMock()
        resp.raise_for_status = MagicMock()
        resp.json = MagicMock(return_value=payload)
        return resp

    def test_returns_version_document(self):
        payload = {"Browser": "Chrome/120.0", "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/browser/abc"}
        with patch("tabquery.browser.debugging.requests.get", return_value=self._response(payload)) as mock_get:
            data = probe_endpoint("127.0.0.1", 9222, timeout=1.0)
        assert data["Browser"] == "Chrome/120.0"
        mock_get.assert_called_once_with("http://127.0.0.1:9222/json/version", timeout=1.0)

    def test_connection_refused(self):
        with patch("tabquery.browser.debugging.requests.get", side_effect=requests.ConnectionError()):
            with pytest.raises(DebuggerUnavailableError) as exc_info:
                probe_endpoint("127.0.0.1", 9223)
        assert exc_info.value.port == 9223
        assert "connection refused" in str(exc_info.value)

    def test_missing_websocket_url(self):
        with patch("tabquery.browser.debugging.requests.get", return_value=self._response({"Browser": "x"})):
            with pytest.raises(DebuggerUnavailableError):
                probe_endpoint("127.0.0.1", 9222)

    def test_not_json(self):
        resp = self._response(None)
        resp.json.side_effect = ValueError("no json")
        with patch("tabquery.browser.debugging.requests.get", return_value=resp):
            with pytest.raises(DebuggerUnavailableError):
                probe_endpoint("127.0.0.1", 9222)
