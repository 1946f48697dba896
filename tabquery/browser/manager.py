"""
BrowserManager - attaches to running Chromium browsers over CDP.

Keeps one Playwright connection per debugging endpoint, tracks the
selected tab, and runs DOM queries and tab actions against it.
"""
import asyncio
import fnmatch
import time
from typing import Optional, Dict, Callable, Any, List, AsyncIterator

from playwright.async_api import Error as PlaywrightError

from ..config import Settings, get_settings
from ..dom.errors import DomQueryError
from ..dom.handles import stream_page_query
from ..dom.models import MatchResult, TraversalOptions
from ..dom.script import run_query_script
from ..logging_config import get_logger
from .debugging import endpoint_url, probe_endpoint, resolve_port
from .errors import NoTabSelectedError, TabNotFoundError
from .models import (
    ActionType,
    BrowserAction,
    BrowserConnection,
    BrowserKind,
    QueryMode,
    TabInfo,
)

logger = get_logger("tabquery.browser")

VIDEO_FULLSCREEN_JS = (
    "() => {"
    "window.video = document.getElementsByTagName('video')[0];"
    "if (!window.video) return false;"
    "video.setAttribute('style','position:fixed;left:0;top:0;bottom:0;"
    "right:0;z-index:10000;width:100vw;height:100vh');"
    "document.body.appendChild(video);"
    "document.body.setAttribute('style', 'overflow:hidden');"
    "return true;"
    "}"
)

CLEAR_SITE_DATA_JS = """async () => {
    const cleared = { localStorage: localStorage.length, sessionStorage: sessionStorage.length,
                      cookies: 0, indexedDB: 0, caches: 0, serviceWorkers: 0 };
    localStorage.clear();
    sessionStorage.clear();

    const expired = "=;expires=" + new Date(0).toUTCString() + ";path=/";
    for (const cookie of document.cookie.split(";")) {
        const name = cookie.replace(/^ +/, "").replace(/=.*/, "");
        if (!name) continue;
        document.cookie = name + expired;
        cleared.cookies++;
    }

    if (window.indexedDB && indexedDB.databases) {
        const databases = await indexedDB.databases().catch(() => []);
        for (const db of databases) {
            indexedDB.deleteDatabase(db.name);
            cleared.indexedDB++;
        }
    }
    if ("caches" in window) {
        const names = await caches.keys().catch(() => []);
        for (const name of names) {
            if (await caches.delete(name)) cleared.caches++;
        }
    }
    if ("serviceWorker" in navigator) {
        const registrations = await navigator.serviceWorker.getRegistrations().catch(() => []);
        for (const registration of registrations) {
            if (await registration.unregister()) cleared.serviceWorkers++;
        }
    }
    return cleared;
}"""


class BrowserManager:
    """Manages CDP connections and the currently selected tab."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.connections: Dict[str, BrowserConnection] = {}
        self.action_history: List[BrowserAction] = []
        self._playwright = None
        self._browsers: Dict[str, Any] = {}
        self._active_endpoint: Optional[str] = None
        self._selected_page = None
        self._action_callbacks: List[Callable] = []
        self._initialized = False

    async def _ensure_playwright(self):
        """Lazy-init Playwright on first use."""
        if not self._initialized:
            from playwright.async_api import async_playwright
            self._playwright = await async_playwright().start()
            self._initialized = True
            logger.info("Playwright initialized")

    def add_action_callback(self, callback: Callable):
        self._action_callbacks.append(callback)

    async def _notify_action(self, action: BrowserAction):
        for callback in self._action_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(action)
                else:
                    callback(action)
            except Exception as e:
                logger.error(f"Browser action callback error: {e}")

    async def _record(self, action: BrowserAction, start: float):
        action.duration_ms = (time.monotonic() - start) * 1000
        self.action_history.append(action)
        limit = self.settings.max_action_history
        if len(self.action_history) > limit:
            self.action_history = self.action_history[-limit:]
        await self._notify_action(action)

    # ==================== Connection ====================

    @property
    def connected(self) -> bool:
        browser = self._browsers.get(self._active_endpoint) if self._active_endpoint else None
        return browser is not None and browser.is_connected()

    async def connect(
        self,
        browser: Optional[BrowserKind] = None,
        port: Optional[int] = None,
        host: Optional[str] = None,
    ) -> BrowserConnection:
        """Attach to the browser listening on the resolved debugging port."""
        port = port or resolve_port(browser, self.settings)
        host = host or self.settings.cdp_host
        endpoint = endpoint_url(host, port)

        cached = self._browsers.get(endpoint)
        if cached is not None and cached.is_connected():
            self._activate(endpoint)
            return self.connections[endpoint]

        action = BrowserAction(action_type=ActionType.CONNECT, params={"endpoint": endpoint})
        start = time.monotonic()
        try:
            version = await asyncio.to_thread(probe_endpoint, host, port, self.settings.probe_timeout)
            await self._ensure_playwright()
            logger.info(f"Connecting to browser via CDP at {endpoint}")
            cdp_browser = await self._playwright.chromium.connect_over_cdp(endpoint)
        except Exception as e:
            action.error = str(e)
            await self._record(action, start)
            logger.error(f"Failed to connect to {endpoint}: {e}")
            raise

        self._browsers[endpoint] = cdp_browser
        connection = BrowserConnection(
            endpoint=endpoint,
            port=port,
            browser=browser,
            ws_url=version.get("webSocketDebuggerUrl", ""),
            product=version.get("Browser", ""),
        )
        self.connections[endpoint] = connection
        self._activate(endpoint)
        logger.info_with("Connected to browser", endpoint=endpoint, product=connection.product)

        action.result = connection.to_dict()
        await self._record(action, start)
        return connection

    def _activate(self, endpoint: str):
        if endpoint != self._active_endpoint:
            self._active_endpoint = endpoint
            self._selected_page = None

    async def close_all(self):
        """Drop every CDP connection and stop Playwright."""
        for endpoint, cdp_browser in list(self._browsers.items()):
            try:
                await cdp_browser.close()
            except Exception as e:
                logger.error(f"Error closing connection {endpoint}: {e}")
        self._browsers.clear()
        self.connections.clear()
        self._active_endpoint = None
        self._selected_page = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
            self._initialized = False
            logger.info("Playwright stopped")

    # ==================== Tabs ====================

    def _pages(self) -> List[Any]:
        if not self.connected:
            return []
        cdp_browser = self._browsers[self._active_endpoint]
        return [page for context in cdp_browser.contexts for page in context.pages]

    async def list_tabs(self) -> List[TabInfo]:
        tabs = []
        for index, page in enumerate(self._pages()):
            tabs.append(TabInfo(
                index=index,
                url=page.url,
                title=await page.title(),
                selected=page is self._selected_page,
            ))
        return tabs

    async def select_tab(self, index: Optional[int] = None, pattern: Optional[str] = None) -> TabInfo:
        """
        Select a tab by position or by a glob matched against URL and title.

        With neither argument the first tab is selected.
        """
        if not self.connected:
            await self.connect()

        action = BrowserAction(action_type=ActionType.SELECT_TAB, params={"index": index, "pattern": pattern})
        start = time.monotonic()
        pages = self._pages()
        chosen = None

        if index is not None:
            if 0 <= index < len(pages):
                chosen = index
        elif pattern:
            needle = pattern.lower()
            for i, page in enumerate(pages):
                title = await page.title()
                if fnmatch.fnmatch(page.url.lower(), needle) or fnmatch.fnmatch(title.lower(), needle):
                    chosen = i
                    break
        elif pages:
            chosen = 0

        if chosen is None:
            action.error = "No matching tab"
            await self._record(action, start)
            what = f"index {index}" if index is not None else f"pattern {pattern!r}" if pattern else "any tab"
            raise TabNotFoundError(f"No browser tab found for {what}")

        page = pages[chosen]
        self._selected_page = page
        tab = TabInfo(index=chosen, url=page.url, title=await page.title(), selected=True)
        action.result = tab.to_dict()
        await self._record(action, start)
        logger.info(f"Selected tab {chosen}: {tab.title} ({tab.url})")
        return tab

    async def current_page(self, no_auto_select: bool = False):
        """The selected page, selecting the first tab unless told not to."""
        page = self._selected_page
        if page is not None and not page.is_closed():
            return page
        if no_auto_select:
            raise NoTabSelectedError("No browser tab selected, use select_tab() to select a tab first.")
        await self.select_tab()
        return self._selected_page

    async def navigate(self, url: str, no_auto_select: bool = False) -> BrowserAction:
        """Set the selected tab's location and wait for the load."""
        page = await self.current_page(no_auto_select)
        action = BrowserAction(action_type=ActionType.NAVIGATE, params={"url": url})
        start = time.monotonic()

        try:
            logger.info(f"Navigating to URL: {url}")
            response = await page.goto(url, timeout=self.settings.navigation_timeout_ms)
            action.result = {
                "status": response.status if response else None,
                "url": page.url,
                "title": await page.title(),
            }
        except Exception as e:
            action.error = str(e)

        await self._record(action, start)
        return action

    async def close_tab(self, no_auto_select: bool = False) -> BrowserAction:
        page = await self.current_page(no_auto_select)
        title = await page.title()
        action = BrowserAction(action_type=ActionType.CLOSE_TAB, params={"url": page.url, "title": title})
        start = time.monotonic()

        logger.info(f"Closing browser tab: '{title}' at URL: {page.url}")
        try:
            await page.close()
            action.result = {"closed": True}
        except Exception as e:
            action.error = str(e)
        self._selected_page = None

        await self._record(action, start)
        return action

    # ==================== DOM Queries ====================

    async def query(
        self,
        selectors,
        modify_script: str = "",
        mode: QueryMode = QueryMode.SCRIPT,
        options: Optional[TraversalOptions] = None,
        page: Any = None,
        no_auto_select: bool = False,
    ) -> AsyncIterator[MatchResult]:
        """Stream query results from ``page`` (default: the selected tab)."""
        if page is None:
            page = await self.current_page(no_auto_select)
        logger.debug_with("Executing query", selectors=selectors, modify_script=modify_script, mode=mode.value)

        if mode is QueryMode.HANDLES:
            results = stream_page_query(page, selectors, modify_script, options)
        else:
            results = run_query_script(page, selectors, modify_script, options)
        async for result in results:
            yield result

    async def query_all(
        self,
        selectors,
        modify_script: str = "",
        mode: QueryMode = QueryMode.SCRIPT,
        options: Optional[TraversalOptions] = None,
        page: Any = None,
        no_auto_select: bool = False,
    ) -> List[MatchResult]:
        """Run a query to completion and record it in the history."""
        action = BrowserAction(
            action_type=ActionType.QUERY,
            params={"selectors": selectors, "modify_script": modify_script, "mode": mode.value},
        )
        start = time.monotonic()
        try:
            results = [
                result async for result in self.query(
                    selectors, modify_script, mode, options, page, no_auto_select
                )
            ]
        except Exception as e:
            action.error = str(e)
            await self._record(action, start)
            raise
        action.result = {"count": len(results)}
        await self._record(action, start)
        return results

    # ==================== Videos ====================

    async def pause_videos(self) -> int:
        """Pause every video in every tab; returns the number of videos paused."""
        if not self.connected:
            await self.connect()

        action = BrowserAction(action_type=ActionType.PAUSE_VIDEOS)
        start = time.monotonic()
        paused = 0
        for page in self._pages():
            try:
                results = [result async for result in run_query_script(page, "video", "e.pause()")]
                paused += sum(1 for result in results if not result.is_error)
            except (PlaywrightError, DomQueryError) as e:
                logger.warning(f"Failed to pause videos in tab {page.url}: {e}")

        action.result = {"paused": paused}
        await self._record(action, start)
        return paused

    async def resume_video(self, pattern: str = "*youtube*") -> List[MatchResult]:
        """Select the first tab matching ``pattern`` and play its videos."""
        await self.select_tab(pattern=pattern)
        action = BrowserAction(action_type=ActionType.RESUME_VIDEO, params={"pattern": pattern})
        start = time.monotonic()
        results = [result async for result in run_query_script(self._selected_page, "video", "e.play()")]
        action.result = {"videos": len(results)}
        await self._record(action, start)
        return results

    async def set_video_fullscreen(self, no_auto_select: bool = False) -> bool:
        """Stretch the tab's first video over the whole viewport."""
        page = await self.current_page(no_auto_select)
        action = BrowserAction(action_type=ActionType.FULLSCREEN_VIDEO)
        start = time.monotonic()
        found = bool(await page.evaluate(VIDEO_FULLSCREEN_JS))
        action.result = {"video_found": found}
        await self._record(action, start)
        return found

    # ==================== Site Data ====================

    async def clear_site_data(self, no_auto_select: bool = False) -> BrowserAction:
        """
        Clear the selected tab's site data: local and session storage,
        cookies visible to the page, IndexedDB, Cache Storage and service
        worker registrations. Other sites are untouched.
        """
        page = await self.current_page(no_auto_select)
        action = BrowserAction(action_type=ActionType.CLEAR_SITE_DATA, params={"url": page.url})
        start = time.monotonic()

        logger.info(f"Clearing site data for {page.url}")
        try:
            action.result = await page.evaluate(CLEAR_SITE_DATA_JS)
        except PlaywrightError as e:
            action.error = str(e)

        await self._record(action, start)
        return action

    # ==================== History ====================

    def get_action_history(self, limit: int = 50) -> List[dict]:
        return [a.to_dict() for a in self.action_history[-limit:]]

    def status(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "connected": self.connected,
            "active_endpoint": self._active_endpoint,
            "connections": [c.to_dict() for c in self.connections.values()],
        }


# Global singleton instance
browser_manager = BrowserManager()
