"""
In-page traversal script.

Builds a self-contained JavaScript function that performs the selector-chain
walk inside the page and returns every match in one round trip. Selectors
and the action snippet are embedded as JSON so they cannot break out of the
script.
"""
import json
from typing import Any, AsyncIterator, Iterable, Optional, Union

from playwright.async_api import Error as PlaywrightError

from ..logging_config import get_logger
from .errors import SelectorSyntaxError
from .models import MatchResult, SelectorChain, TraversalOptions

logger = get_logger("tabquery.dom.script")

QUERY_SCRIPT_TEMPLATE = """async () => {
    const modifyScript = JSON.parse(%(modify_script)s);
    let selectors = JSON.parse(%(selectors)s);
    selectors = selectors instanceof Array ? selectors : [selectors];
    const yieldHostMatches = %(yield_host_matches)s;
    const descendLightDom = %(descend_light_dom)s;

    async function terminal(currentNode, i, nodes, selectorIndex) {
        if (!!modifyScript && modifyScript != "") {
            try {
                const value = await (async function (e, i, n, modifyScript) {
                    return eval(modifyScript);
                })(currentNode, i, nodes, modifyScript);
                return { value: value === undefined ? null : value, index: i, depth: selectorIndex, error: null };
            } catch (e) {
                return { value: null, index: i, depth: selectorIndex, error: e + '' };
            }
        }
        return { value: currentNode.outerHTML, index: i, depth: selectorIndex, error: null };
    }

    async function* traverseNodes(node, selectorIndex) {
        if (selectorIndex >= selectors.length) return;

        const isLast = selectorIndex === selectors.length - 1;
        let nodes;
        try {
            nodes = node.querySelectorAll(selectors[selectorIndex]);
        } catch (e) {
            throw new Error('SelectorSyntaxError: ' + selectors[selectorIndex]);
        }

        for (let i = 0; i < nodes.length; i++) {
            const currentNode = nodes[i];

            if (currentNode.shadowRoot) {
                if (isLast && yieldHostMatches) yield await terminal(currentNode, i, nodes, selectorIndex);
                yield* traverseNodes(currentNode.shadowRoot, selectorIndex + 1);
                continue;
            }

            if (currentNode.tagName === 'IFRAME') {
                if (isLast && yieldHostMatches) yield await terminal(currentNode, i, nodes, selectorIndex);
                let iframeDoc = null;
                try {
                    iframeDoc = currentNode.contentDocument || currentNode.contentWindow.document;
                } catch (e) {
                    iframeDoc = null;
                }
                if (!iframeDoc) {
                    console.warn('Cannot access iframe content');
                    continue;
                }
                yield* traverseNodes(iframeDoc, selectorIndex + 1);
                continue;
            }

            if (isLast) {
                yield await terminal(currentNode, i, nodes, selectorIndex);
            } else if (descendLightDom) {
                yield* traverseNodes(currentNode, selectorIndex + 1);
            }
        }
    }

    const results = [];
    for await (const result of traverseNodes(document, 0)) {
        results.push(result);
    }
    return results;
}"""

SELECTOR_ERROR_MARKER = "SelectorSyntaxError: "


def _double_json(value: Any) -> str:
    """JSON-encode ``value``, then encode that text as a JS string literal."""
    return json.dumps(json.dumps(value))


def build_query_script(
    selectors: Union[SelectorChain, str, Iterable[str]],
    modify_script: str = "",
    options: Optional[TraversalOptions] = None,
) -> str:
    """Return the page function text for ``page.evaluate``."""
    chain = SelectorChain.coerce(selectors)
    options = options or TraversalOptions()
    return QUERY_SCRIPT_TEMPLATE % {
        "modify_script": _double_json(modify_script or ""),
        "selectors": _double_json(chain.to_list()),
        "yield_host_matches": "true" if options.yield_host_matches else "false",
        "descend_light_dom": "true" if options.descend_light_dom else "false",
    }


def selector_from_error(message: str) -> Optional[str]:
    """The offending selector if ``message`` carries the in-page syntax marker."""
    if SELECTOR_ERROR_MARKER not in message:
        return None
    tail = message.split(SELECTOR_ERROR_MARKER, 1)[1]
    return tail.splitlines()[0].strip()


async def run_query_script(
    page: Any,
    selectors: Union[SelectorChain, str, Iterable[str]],
    modify_script: str = "",
    options: Optional[TraversalOptions] = None,
) -> AsyncIterator[MatchResult]:
    """Evaluate the traversal inside ``page`` and yield its results in order."""
    script = build_query_script(selectors, modify_script, options)
    try:
        raw_results = await page.evaluate(script)
    except PlaywrightError as e:
        selector = selector_from_error(e.message)
        if selector is not None:
            raise SelectorSyntaxError(selector) from e
        raise

    logger.debug(f"In-page query returned {len(raw_results or [])} results")
    for raw in raw_results or []:
        yield MatchResult.from_dict(raw)
