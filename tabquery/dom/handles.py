"""
Live-page DOM backend driven through Playwright handles.

Unlike the in-page script, this walks the page from Python one hop at a
time, so results stream out as each element is reached.
"""
from contextlib import aclosing
from typing import Any, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError, JSHandle, Page

from ..logging_config import get_logger
from .engine import traverse
from .errors import ActionScriptError, FrameAccessError, SelectorSyntaxError

logger = get_logger("tabquery.dom.handles")

QUERY_ALL_JS = "(root, selector) => Array.from(root.querySelectorAll(selector))"
HAS_SHADOW_ROOT_JS = "e => !!e.shadowRoot"
SHADOW_ROOT_JS = "e => e.shadowRoot"
IS_FRAME_JS = "e => e.tagName === 'IFRAME'"
FRAME_REACHABLE_JS = """e => {
    try {
        return !!(e.contentDocument || e.contentWindow.document);
    } catch (err) {
        return false;
    }
}"""
FRAME_DOCUMENT_JS = "e => e.contentDocument || e.contentWindow.document"
OUTER_HTML_JS = "e => e.outerHTML"

ACTION_JS = """async (e, [i, n, modifyScript]) => {
    try {
        const value = await eval(modifyScript);
        return { ok: true, value: value === undefined ? null : value };
    } catch (err) {
        return { ok: false, error: err + '' };
    }
}"""

SYNTAX_ERROR_HINTS = ("is not a valid selector", "SyntaxError")


class PlaywrightDomAdapter:
    """DomAdapter over JSHandles of a live page."""

    async def query_all(self, root: JSHandle, selector: str) -> List[JSHandle]:
        try:
            array_handle = await root.evaluate_handle(QUERY_ALL_JS, selector)
        except PlaywrightError as e:
            if any(hint in e.message for hint in SYNTAX_ERROR_HINTS):
                raise SelectorSyntaxError(selector, e.message.splitlines()[0]) from e
            raise
        try:
            properties = await array_handle.get_properties()
        finally:
            await array_handle.dispose()

        indexed = []
        for name, handle in properties.items():
            if name.isdigit():
                indexed.append((int(name), handle))
            else:
                # e.g. "length"
                await handle.dispose()
        indexed.sort(key=lambda item: item[0])
        return [handle for _, handle in indexed]

    async def shadow_root(self, element: JSHandle) -> Optional[JSHandle]:
        if not await element.evaluate(HAS_SHADOW_ROOT_JS):
            return None
        return await element.evaluate_handle(SHADOW_ROOT_JS)

    async def is_frame(self, element: JSHandle) -> bool:
        return bool(await element.evaluate(IS_FRAME_JS))

    async def frame_document(self, element: JSHandle) -> JSHandle:
        if not await element.evaluate(FRAME_REACHABLE_JS):
            raise FrameAccessError("Cannot access iframe content (cross-origin or not loaded)")
        return await element.evaluate_handle(FRAME_DOCUMENT_JS)

    async def outer_html(self, element: JSHandle) -> str:
        return await element.evaluate(OUTER_HTML_JS)

    async def release(self, handle: JSHandle) -> None:
        try:
            await handle.dispose()
        except PlaywrightError as e:
            # The page may already be gone, taking its remote objects with it
            logger.debug(f"Could not dispose handle: {e.message}")


class PlaywrightActionEvaluator:
    """Evaluates a JavaScript snippet with ``e``, ``i`` and ``n`` bound."""

    async def evaluate(self, element: JSHandle, index: int, candidates: Sequence[JSHandle], action: str) -> Any:
        try:
            outcome = await element.evaluate(ACTION_JS, [index, list(candidates), action])
        except PlaywrightError as e:
            raise ActionScriptError(e.message.splitlines()[0]) from e
        if not outcome.get("ok"):
            raise ActionScriptError(outcome.get("error") or "Error")
        return outcome.get("value")


async def document_handle(page: Page) -> JSHandle:
    return await page.evaluate_handle("document")


async def stream_page_query(page: Page, selectors, modify_script: str = "", options=None):
    """Traverse the page's document through handles, yielding MatchResults."""
    root = await document_handle(page)
    results = traverse(
        root,
        selectors,
        modify_script or None,
        adapter=PlaywrightDomAdapter(),
        evaluator=PlaywrightActionEvaluator(),
        options=options,
    )
    try:
        async with aclosing(results):
            async for result in results:
                yield result
    finally:
        await root.dispose()
