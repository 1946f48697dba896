"""
Browser connection data models.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class BrowserKind(Enum):
    CHROME = "chrome"
    EDGE = "edge"


class QueryMode(Enum):
    SCRIPT = "script"     # whole traversal in one page.evaluate
    HANDLES = "handles"   # hop-by-hop from Python, streamed


class ActionType(Enum):
    CONNECT = "connect"
    SELECT_TAB = "select_tab"
    NAVIGATE = "navigate"
    CLOSE_TAB = "close_tab"
    QUERY = "query"
    PAUSE_VIDEOS = "pause_videos"
    RESUME_VIDEO = "resume_video"
    FULLSCREEN_VIDEO = "fullscreen_video"
    CLEAR_SITE_DATA = "clear_site_data"


@dataclass
class BrowserConnection:
    """A CDP connection to a running browser."""
    endpoint: str
    port: int
    browser: Optional[BrowserKind] = None
    ws_url: str = ""
    product: str = ""
    connected_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "port": self.port,
            "browser": self.browser.value if self.browser else None,
            "ws_url": self.ws_url,
            "product": self.product,
            "connected_at": self.connected_at,
        }


@dataclass
class TabInfo:
    """A page (tab) in a connected browser."""
    index: int
    url: str
    title: str
    selected: bool = False

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "url": self.url,
            "title": self.title,
            "selected": self.selected,
        }


@dataclass
class BrowserAction:
    """A browser action that has been executed."""
    action_type: ActionType
    params: Dict[str, Any] = field(default_factory=dict)
    result: Optional[Any] = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "action_type": self.action_type.value,
            "params": self.params,
            "result": self.result,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp,
        }
