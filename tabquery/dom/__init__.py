"""
DOM query engine.

Walks a chain of CSS selectors across shadow roots and same-origin iframes,
yielding each terminal element's markup or the result of a per-element
action. Backends:

- soup: parsed HTML in memory (BeautifulSoup)
- handles: a live Playwright page, walked hop by hop from Python
- script: a live Playwright page, walked entirely in-page
"""
from .engine import DomAdapter, ElementActionEvaluator, collect, traverse
from .errors import ActionScriptError, DomQueryError, FrameAccessError, SelectorSyntaxError
from .models import MatchResult, SelectorChain, TraversalOptions

__all__ = [
    "DomAdapter",
    "ElementActionEvaluator",
    "collect",
    "traverse",
    "ActionScriptError",
    "DomQueryError",
    "FrameAccessError",
    "SelectorSyntaxError",
    "MatchResult",
    "SelectorChain",
    "TraversalOptions",
]
