import asyncio
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from tabquery.dom import (
    MatchResult,
    SelectorChain,
    SelectorSyntaxError,
    TraversalOptions,
    collect,
    traverse,
)
from tabquery.dom.soup import SoupDocument, SoupDomAdapter, parse_html


SHADOW_PAGE = (
    '<div class="inner">light</div>'
    '<div class="host">'
    '<template shadowrootmode="open"><div class="inner">shadow</div></template>'
    '<div class="inner">slotted</div>'
    '</div>'
)

FRAME_PAGE = (
    '<iframe src="https://other.example/widget"></iframe>'
    '<iframe srcdoc="<p class=\'x\'>inside</p>"></iframe>'
)


def values(results):
    return [r.value for r in results]


class TestSelectorChain:
    def test_coerce_string(self):
        chain = SelectorChain.coerce(".x")
        assert chain.to_list() == [".x"]
        assert len(chain) == 1
        assert chain.is_last(0)

    def test_coerce_list(self):
        chain = SelectorChain.coerce([".host", ".inner"])
        assert chain[1] == ".inner"
        assert not chain.is_last(0)
        assert chain.is_last(1)

    def test_coerce_passthrough(self):
        chain = SelectorChain((".a",))
        assert SelectorChain.coerce(chain) is chain

    def test_empty_chain_rejected(self):
        with pytest.raises(ValueError):
            SelectorChain.coerce([])

    def test_blank_selector_rejected(self):
        with pytest.raises(ValueError):
            SelectorChain.coerce([".a", "  "])


class TestMatchResult:
    def test_text_prefers_error(self):
        result = MatchResult(value=None, error="Error: boom")
        assert result.is_error
        assert result.text == "Error: boom"

    def test_text_stringifies_values(self):
        assert MatchResult(value=3).text == "3"
        assert MatchResult(value=None).text == ""
        assert MatchResult(value="<b></b>").text == "<b></b>"

    def test_from_dict(self):
        result = MatchResult.from_dict({"value": "v", "index": 2, "depth": 1, "error": None})
        assert result.index == 2
        assert result.depth == 1
        assert not result.is_error


class TestLightDom:
    @pytest.mark.asyncio
    async def test_serializes_matches_in_document_order(self):
        doc = SoupDocument('<div class="x">A</div><div class="x">B</div>')
        results = await doc.collect(".x")
        assert values(results) == ['<div class="x">A</div>', '<div class="x">B</div>']
        assert [r.index for r in results] == [0, 1]

    @pytest.mark.asyncio
    async def test_empty_candidate_set(self):
        doc = SoupDocument('<div class="x">A</div>')
        assert await doc.collect(".missing") == []

    @pytest.mark.asyncio
    async def test_empty_candidate_set_deeper_in_chain(self):
        doc = SoupDocument(SHADOW_PAGE)
        assert await doc.collect([".host", ".nothing"]) == []

    @pytest.mark.asyncio
    async def test_light_query_does_not_see_shadow_content(self):
        doc = SoupDocument(SHADOW_PAGE)
        results = await doc.collect(".inner")
        assert values(results) == [
            '<div class="inner">light</div>',
            '<div class="inner">slotted</div>',
        ]

    @pytest.mark.asyncio
    async def test_plain_element_with_selectors_left_contributes_nothing(self):
        doc = SoupDocument('<section class="a"><p class="b">x</p></section>')
        assert await doc.collect([".a", ".b"]) == []

    @pytest.mark.asyncio
    async def test_descend_light_dom_option(self):
        doc = SoupDocument('<section class="a"><p class="b">x</p></section>')
        options = TraversalOptions(descend_light_dom=True)
        results = await doc.collect([".a", ".b"], options=options)
        assert values(results) == ['<p class="b">x</p>']
        assert results[0].depth == 1


class TestShadowDom:
    @pytest.mark.asyncio
    async def test_second_selector_runs_inside_shadow_root(self):
        doc = SoupDocument(SHADOW_PAGE)
        results = await doc.collect([".host", ".inner"])
        assert values(results) == ['<div class="inner">shadow</div>']
        assert results[0].depth == 1
        assert results[0].index == 0

    @pytest.mark.asyncio
    async def test_host_as_last_selector_is_swallowed_by_default(self):
        doc = SoupDocument(SHADOW_PAGE)
        assert await doc.collect(".host") == []

    @pytest.mark.asyncio
    async def test_host_as_last_selector_with_option(self):
        doc = SoupDocument(SHADOW_PAGE)
        results = await doc.collect(".host", options=TraversalOptions(yield_host_matches=True))
        assert len(results) == 1
        assert results[0].value.startswith('<div class="host">')

    @pytest.mark.asyncio
    async def test_nested_shadow_roots(self):
        doc = SoupDocument(
            '<x-outer><template shadowrootmode="open">'
            '<span>outer</span>'
            '<x-inner><template shadowrootmode="open"><span>deep</span></template></x-inner>'
            '</template></x-outer>'
        )
        assert values(await doc.collect(["x-outer", "span"])) == ["<span>outer</span>"]
        assert values(await doc.collect(["x-outer", "x-inner", "span"])) == ["<span>deep</span>"]

    @pytest.mark.asyncio
    async def test_legacy_shadowroot_attribute(self):
        doc = SoupDocument('<div class="host"><template shadowroot="open"><i>old</i></template></div>')
        assert values(await doc.collect([".host", "i"])) == ["<i>old</i>"]

    @pytest.mark.asyncio
    async def test_shadow_query_does_not_see_host_ancestors(self):
        doc = SoupDocument(
            '<div class="host"><template shadowrootmode="open"><div class="inner">shadow</div></template></div>'
        )
        assert await doc.collect([".host", ".host .inner"]) == []
        assert await doc.collect([".host", "div > .inner"]) == []
        assert values(await doc.collect([".host", ".inner"])) == ['<div class="inner">shadow</div>']

    @pytest.mark.asyncio
    async def test_combinators_work_within_shadow_tree(self):
        doc = SoupDocument(
            '<div class="host"><template shadowrootmode="open">'
            '<section><p>a</p></section><p>b</p>'
            '</template></div>'
        )
        assert values(await doc.collect([".host", "section p"])) == ["<p>a</p>"]
        assert values(await doc.collect([".host", "section + p"])) == ["<p>b</p>"]

    @pytest.mark.asyncio
    async def test_shadow_query_leaves_document_intact(self):
        doc = SoupDocument(SHADOW_PAGE)
        before = str(doc)
        await doc.collect([".host", ".inner"])
        assert str(doc) == before
        template = doc.root.select_one(".host > template")
        assert template.select_one(".inner").get_text() == "shadow"


class TestFrames:
    @pytest.mark.asyncio
    async def test_cross_origin_frame_is_skipped(self, caplog):
        doc = SoupDocument(FRAME_PAGE)
        with caplog.at_level(logging.WARNING, logger="tabquery.dom.engine"):
            results = await doc.collect(["iframe", ".x"])
        assert values(results) == ['<p class="x">inside</p>']
        assert "Cannot access iframe content" in caplog.text

    @pytest.mark.asyncio
    async def test_frame_from_same_origin_mapping(self):
        doc = SoupDocument('<iframe src="/inner.html"></iframe>', frames={"/inner.html": "<p>ok</p>"})
        assert values(await doc.collect(["iframe", "p"])) == ["<p>ok</p>"]

    @pytest.mark.asyncio
    async def test_blank_frame_yields_nothing(self):
        doc = SoupDocument('<iframe src="about:blank"></iframe>')
        assert await doc.collect(["iframe", "p"]) == []

    @pytest.mark.asyncio
    async def test_frame_as_last_selector(self):
        doc = SoupDocument(FRAME_PAGE)
        assert await doc.collect("iframe") == []
        results = await doc.collect("iframe", options=TraversalOptions(yield_host_matches=True))
        assert len(results) == 2
        assert all(r.value.startswith("<iframe") for r in results)

    @pytest.mark.asyncio
    async def test_shadow_root_inside_frame(self):
        doc = SoupDocument(
            "<iframe srcdoc='<div class=\"host\"><template shadowrootmode=\"open\">"
            "<span>deep</span></template></div>'></iframe>"
        )
        assert values(await doc.collect(["iframe", ".host", "span"])) == ["<span>deep</span>"]

    @pytest.mark.asyncio
    async def test_frame_edits_persist_between_calls(self):
        doc = SoupDocument('<iframe srcdoc="<p class=\'x\'>1</p>"></iframe>')

        def rename(e, i, n):
            e.string = "2"

        await doc.collect(["iframe", ".x"], rename)
        assert values(await doc.collect(["iframe", ".x"])) == ['<p class="x">2</p>']


class TestActions:
    @pytest.mark.asyncio
    async def test_action_receives_element_index_and_candidates(self):
        doc = SoupDocument('<div class="x">A</div><div class="x">B</div>')
        results = await doc.collect(".x", lambda e, i, n: f"{e.get_text()}:{i}/{len(n)}")
        assert values(results) == ["A:0/2", "B:1/2"]

    @pytest.mark.asyncio
    async def test_failing_action_does_not_stop_traversal(self):
        doc = SoupDocument('<p class="x">A</p><p class="x">B</p><p class="x">C</p>')

        def action(e, i, n):
            if i == 1:
                raise RuntimeError("boom")
            return e.get_text()

        results = await doc.collect(".x", action)
        assert len(results) == 3
        assert [r.text for r in results] == ["A", "RuntimeError: boom", "C"]
        assert [r.is_error for r in results] == [False, True, False]

    @pytest.mark.asyncio
    async def test_async_action_results_keep_document_order(self):
        doc = SoupDocument('<p class="x">A</p><p class="x">B</p>')

        async def action(e, i, n):
            await asyncio.sleep(0.01 if i == 0 else 0)
            return e.get_text()

        assert values(await doc.collect(".x", action)) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_mutation_is_visible_to_next_call(self):
        doc = SoupDocument('<div class="x">A</div><div class="x">B</div>')

        def drop_class(e, i, n):
            if i == 0:
                del e["class"]

        await doc.collect(".x", drop_class)
        assert values(await doc.collect(".x")) == ['<div class="x">B</div>']

    @pytest.mark.asyncio
    async def test_stopping_early_visits_no_further_candidates(self):
        doc = SoupDocument('<p class="x">A</p><p class="x">B</p><p class="x">C</p>')
        visited = []

        def action(e, i, n):
            visited.append(i)
            return i

        results = doc.traverse(".x", action)
        first = await results.__anext__()
        await results.aclose()
        assert first.value == 0
        assert visited == [0]


class TestErrors:
    @pytest.mark.asyncio
    async def test_invalid_selector_aborts(self):
        doc = SoupDocument('<div class="x">A</div>')
        with pytest.raises(SelectorSyntaxError) as exc_info:
            await doc.collect("div[")
        assert exc_info.value.selector == "div["

    @pytest.mark.asyncio
    async def test_invalid_selector_deeper_in_chain(self):
        doc = SoupDocument(SHADOW_PAGE)
        with pytest.raises(SelectorSyntaxError):
            await doc.collect([".host", "p:::nope"])

    @pytest.mark.asyncio
    async def test_action_without_evaluator(self):
        root = parse_html('<div class="x">A</div>')
        with pytest.raises(ValueError):
            await collect(root, ".x", lambda e, i, n: 1, adapter=SoupDomAdapter())

    @pytest.mark.asyncio
    async def test_traverse_without_action_needs_no_evaluator(self):
        root = parse_html('<div class="x">A</div>')
        results = [r async for r in traverse(root, ".x", adapter=SoupDomAdapter())]
        assert values(results) == ['<div class="x">A</div>']

    @pytest.mark.asyncio
    async def test_pseudo_element_matches_nothing(self):
        doc = SoupDocument('<p class="x">A</p>')
        assert await doc.collect("p::before") == []
        assert await doc.collect([".x", "p::after"]) == []


class RecordingAdapter(SoupDomAdapter):
    def __init__(self, frames=None):
        super().__init__(frames)
        self.released = []

    async def release(self, node):
        self.released.append(node)


class TestRelease:
    @pytest.mark.asyncio
    async def test_candidates_and_boundaries_are_released_once(self):
        root = parse_html(SHADOW_PAGE + FRAME_PAGE)
        adapter = RecordingAdapter()
        results = await collect(root, [".host, iframe", ".inner, .x"], adapter=adapter)
        assert len(results) == 2

        assert len(adapter.released) == len({id(node) for node in adapter.released})
        released_names = sorted(getattr(node, "name", None) for node in adapter.released)
        # 1 host + 2 iframes, the shadow template, the srcdoc document,
        # and one match inside each
        assert released_names.count("iframe") == 2
        assert released_names.count("template") == 1
        assert released_names.count("[document]") == 1
        assert len(adapter.released) == 7

    @pytest.mark.asyncio
    async def test_stopping_early_still_releases(self):
        root = parse_html(SHADOW_PAGE + SHADOW_PAGE)
        adapter = RecordingAdapter()
        results = traverse(root, [".host", ".inner"], adapter=adapter)
        await results.__anext__()
        await results.aclose()

        hosts = root.select(".host")
        assert all(any(node is host for node in adapter.released) for host in hosts)
        assert sum(1 for node in adapter.released if getattr(node, "name", None) == "template") == 1
