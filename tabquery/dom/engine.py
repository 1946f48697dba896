"""
DomQueryEngine - selector-chain traversal across shadow roots and iframes.

The traversal is host-agnostic: a DomAdapter answers the structural
questions (query, shadow root, frame document, markup) and an
ElementActionEvaluator runs the per-element action. Results are yielded
as they are found, in document order.
"""
from contextlib import aclosing
from typing import Any, AsyncIterator, Iterable, List, Optional, Protocol, Sequence, Union

from ..logging_config import get_logger
from .errors import ActionScriptError, FrameAccessError
from .models import MatchResult, SelectorChain, TraversalOptions

logger = get_logger("tabquery.dom.engine")


class DomAdapter(Protocol):
    """Structural access to one kind of DOM (parsed HTML, live page, ...)."""

    async def query_all(self, root: Any, selector: str) -> List[Any]:
        """Elements under ``root`` matching ``selector`` in document order.

        Raises SelectorSyntaxError for an unparsable selector.
        """
        ...

    async def shadow_root(self, element: Any) -> Optional[Any]:
        ...

    async def is_frame(self, element: Any) -> bool:
        ...

    async def frame_document(self, element: Any) -> Any:
        """The frame's inner document; raises FrameAccessError when unreachable."""
        ...

    async def outer_html(self, element: Any) -> str:
        ...

    async def release(self, node: Any) -> None:
        """Called once the walk is done with a node returned by this adapter."""
        ...


class ElementActionEvaluator(Protocol):
    async def evaluate(self, element: Any, index: int, candidates: Sequence[Any], action: Any) -> Any:
        """Run ``action`` against ``element``; raises ActionScriptError on failure."""
        ...


async def traverse(
    root: Any,
    selectors: Union[SelectorChain, str, Iterable[str]],
    action: Any = None,
    *,
    adapter: DomAdapter,
    evaluator: Optional[ElementActionEvaluator] = None,
    options: Optional[TraversalOptions] = None,
) -> AsyncIterator[MatchResult]:
    """
    Walk ``root`` with a selector chain and yield one MatchResult per terminal match.

    Args:
        root: Document-like node understood by ``adapter``.
        selectors: Selector chain; a bare string is a chain of one.
        action: Per-element action. Empty means "serialize the element".
        adapter: Structural access to the DOM.
        evaluator: Runs ``action``; required when ``action`` is given.
        options: Boundary behaviour switches.

    Raises:
        SelectorSyntaxError: propagated from the adapter, aborting the walk.
    """
    chain = SelectorChain.coerce(selectors)
    if action and evaluator is None:
        raise ValueError("An evaluator is required to run an action")
    walker = _Walker(chain, action, adapter, evaluator, options or TraversalOptions())
    logger.debug_with("Starting traversal", selectors=chain.to_list(), has_action=bool(action))
    async with aclosing(walker.walk(root, 0)) as results:
        async for result in results:
            yield result


async def collect(root: Any, selectors: Union[SelectorChain, str, Iterable[str]], action: Any = None, **kwargs) -> List[MatchResult]:
    """Drain ``traverse`` into a list."""
    return [result async for result in traverse(root, selectors, action, **kwargs)]


class _Walker:
    """Per-call traversal state; never shared between calls."""

    def __init__(self, chain: SelectorChain, action: Any, adapter: DomAdapter,
                 evaluator: Optional[ElementActionEvaluator], options: TraversalOptions):
        self.chain = chain
        self.action = action
        self.adapter = adapter
        self.evaluator = evaluator
        self.options = options

    async def walk(self, node: Any, depth: int) -> AsyncIterator[MatchResult]:
        if depth >= len(self.chain):
            return

        candidates = await self.adapter.query_all(node, self.chain[depth])
        last = self.chain.is_last(depth)

        try:
            for index, candidate in enumerate(candidates):
                shadow = await self.adapter.shadow_root(candidate)
                if shadow is not None:
                    if last and self.options.yield_host_matches:
                        yield await self._terminal(candidate, index, candidates, depth)
                    try:
                        async with aclosing(self.walk(shadow, depth + 1)) as results:
                            async for result in results:
                                yield result
                    finally:
                        await self.adapter.release(shadow)
                    continue

                if await self.adapter.is_frame(candidate):
                    if last and self.options.yield_host_matches:
                        yield await self._terminal(candidate, index, candidates, depth)
                    try:
                        document = await self.adapter.frame_document(candidate)
                    except FrameAccessError as e:
                        logger.warning_with(
                            "Cannot access iframe content", selector=self.chain[depth], depth=depth, reason=str(e)
                        )
                        continue
                    try:
                        async with aclosing(self.walk(document, depth + 1)) as results:
                            async for result in results:
                                yield result
                    finally:
                        await self.adapter.release(document)
                    continue

                if last:
                    yield await self._terminal(candidate, index, candidates, depth)
                elif self.options.descend_light_dom:
                    async with aclosing(self.walk(candidate, depth + 1)) as results:
                        async for result in results:
                            yield result
        finally:
            # every candidate stays alive until the loop ends: actions see them all as n
            for candidate in candidates:
                await self.adapter.release(candidate)

    async def _terminal(self, element: Any, index: int, candidates: Sequence[Any], depth: int) -> MatchResult:
        if not self.action:
            return MatchResult(value=await self.adapter.outer_html(element), index=index, depth=depth)
        try:
            value = await self.evaluator.evaluate(element, index, candidates, self.action)
        except ActionScriptError as e:
            logger.debug(f"Action failed on candidate {index} at depth {depth}: {e}")
            return MatchResult(index=index, depth=depth, error=str(e))
        return MatchResult(value=value, index=index, depth=depth)
