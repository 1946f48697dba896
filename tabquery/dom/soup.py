"""
In-memory DOM backend built on BeautifulSoup.

Shadow roots are written declaratively, as a ``<template shadowrootmode>``
child of the host. Iframes load from ``srcdoc`` or from a mapping of
same-origin URLs; any other source is treated as cross-origin.
"""
import inspect
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import soupsieve
from bs4 import BeautifulSoup, Tag

from ..logging_config import get_logger
from .engine import traverse
from .errors import ActionScriptError, FrameAccessError, SelectorSyntaxError

logger = get_logger("tabquery.dom.soup")

SHADOW_ROOT_ATTRIBUTES = ("shadowrootmode", "shadowroot")
BLANK_FRAME_SOURCES = ("", "about:blank")

HTML_PARSER = "html.parser"


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, HTML_PARSER)


def is_shadow_template(tag: Any) -> bool:
    return (
        isinstance(tag, Tag)
        and tag.name == "template"
        and any(tag.has_attr(attr) for attr in SHADOW_ROOT_ATTRIBUTES)
    )


class SoupDomAdapter:
    """DomAdapter over a parsed HTML document."""

    def __init__(self, frames: Optional[Mapping[str, str]] = None):
        self.frames: Dict[str, str] = dict(frames or {})
        # Parsed inner documents keyed by iframe identity, so edits stick.
        # The iframe is held alongside to keep its id() stable.
        self._frame_documents: Dict[int, Tuple[Tag, BeautifulSoup]] = {}

    async def query_all(self, root: Tag, selector: str) -> List[Tag]:
        try:
            if is_shadow_template(root):
                matches = self._select_in_shadow_root(root, selector)
            else:
                matches = root.select(selector)
        except soupsieve.SelectorSyntaxError as e:
            raise SelectorSyntaxError(selector, str(e).splitlines()[0]) from e
        except NotImplementedError as e:
            # Pseudo-elements parse but never match an element, as in a browser
            logger.debug(f"Selector {selector!r} cannot match elements: {e}")
            return []
        return [tag for tag in matches if self._in_scope(tag, root)]

    async def release(self, node: Any) -> None:
        pass

    async def shadow_root(self, element: Tag) -> Optional[Tag]:
        for child in element.children:
            if is_shadow_template(child):
                return child
        return None

    async def is_frame(self, element: Tag) -> bool:
        return element.name == "iframe"

    async def frame_document(self, element: Tag) -> BeautifulSoup:
        key = id(element)
        if key in self._frame_documents:
            return self._frame_documents[key][1]

        if element.has_attr("srcdoc"):
            html = element["srcdoc"]
        else:
            src = (element.get("src") or "").strip()
            if src in BLANK_FRAME_SOURCES:
                html = ""
            elif src in self.frames:
                html = self.frames[src]
            else:
                raise FrameAccessError(f"Blocked a frame with origin of {src!r} from being accessed")

        document = parse_html(html)
        self._frame_documents[key] = (element, document)
        return document

    async def outer_html(self, element: Tag) -> str:
        return str(element)

    @staticmethod
    def _select_in_shadow_root(template: Tag, selector: str) -> List[Tag]:
        """
        Match against the shadow tree alone.

        The template's children are moved into an empty fragment for the
        duration of the select, so combinators cannot reach the host or its
        light-DOM ancestors. The same Tag objects are moved back afterwards.
        """
        children = list(template.contents)
        fragment = parse_html("")
        for child in children:
            fragment.append(child)
        try:
            return fragment.select(selector)
        finally:
            for child in children:
                template.append(child)

    @staticmethod
    def _in_scope(tag: Tag, root: Tag) -> bool:
        """True unless a shadow template sits between ``tag`` and ``root``."""
        if is_shadow_template(tag):
            return False
        for parent in tag.parents:
            if parent is root:
                return True
            if is_shadow_template(parent):
                return False
        return True


ElementAction = Callable[[Tag, int, Sequence[Tag]], Any]


class CallableActionEvaluator:
    """Runs Python callables ``action(e, i, n)`` as per-element actions."""

    async def evaluate(self, element: Tag, index: int, candidates: Sequence[Tag], action: ElementAction) -> Any:
        try:
            value = action(element, index, candidates)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            raise ActionScriptError(f"{type(e).__name__}: {e}") from e
        return value


class SoupDocument:
    """A parsed document bundled with the adapter and evaluator that walk it."""

    def __init__(self, html: Union[str, BeautifulSoup], frames: Optional[Mapping[str, str]] = None):
        self.root = html if isinstance(html, BeautifulSoup) else parse_html(html)
        self.adapter = SoupDomAdapter(frames)
        self.evaluator = CallableActionEvaluator()

    def traverse(self, selectors, action: Optional[ElementAction] = None, options=None):
        return traverse(
            self.root,
            selectors,
            action,
            adapter=self.adapter,
            evaluator=self.evaluator,
            options=options,
        )

    async def collect(self, selectors, action: Optional[ElementAction] = None, options=None):
        return [result async for result in self.traverse(selectors, action, options)]

    def __str__(self) -> str:
        return str(self.root)
