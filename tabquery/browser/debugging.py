"""
Remote debugging port resolution and endpoint probing.
"""
from typing import Any, Dict, Optional

import requests

from ..config import Settings, get_settings
from ..logging_config import get_logger
from .errors import DebuggerUnavailableError
from .models import BrowserKind

logger = get_logger("tabquery.browser.debugging")


def default_browser(settings: Optional[Settings] = None) -> BrowserKind:
    """The configured default browser; Edge unless Chrome is named."""
    settings = settings or get_settings()
    if "chrome" in settings.default_browser:
        return BrowserKind.CHROME
    return BrowserKind.EDGE


def resolve_port(browser: Optional[BrowserKind] = None, settings: Optional[Settings] = None) -> int:
    """Debugging port for ``browser``, or for the default browser when omitted."""
    settings = settings or get_settings()
    if browser is None:
        browser = default_browser(settings)
        logger.debug(f"Default browser detected: {browser.value}")
    if browser is BrowserKind.CHROME:
        return settings.chrome_port
    return settings.edge_port


def endpoint_url(host: str, port: int) -> str:
    return f"http://{host}:{port}"


def probe_endpoint(host: str, port: int, timeout: float = 5.0) -> Dict[str, Any]:
    """
    Query ``/json/version`` on a DevTools endpoint.

    Returns the decoded version document, which carries
    ``webSocketDebuggerUrl`` and ``Browser``.

    Raises:
        DebuggerUnavailableError: nothing answers, or the answer is not a
            DevTools version document.
    """
    url = f"{endpoint_url(host, port)}/json/version"
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except requests.ConnectionError as e:
        raise DebuggerUnavailableError(host, port, "connection refused") from e
    except requests.Timeout as e:
        raise DebuggerUnavailableError(host, port, "timed out") from e
    except requests.HTTPError as e:
        raise DebuggerUnavailableError(host, port, f"HTTP {e.response.status_code}") from e
    except ValueError as e:
        raise DebuggerUnavailableError(host, port, "response is not JSON") from e

    if not isinstance(data, dict) or not data.get("webSocketDebuggerUrl"):
        raise DebuggerUnavailableError(host, port, "missing webSocketDebuggerUrl")

    logger.debug(f"DevTools endpoint {url}: {data.get('Browser', 'unknown')}")
    return data
