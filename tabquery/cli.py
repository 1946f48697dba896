import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tabquery import __version__
from tabquery.logging_config import setup_logging

console = Console(stderr=True)


def browser_options(func):
    """--chrome/--edge/--port, shared by every command that talks to a browser."""
    func = click.option("--port", "-p", type=int, default=None,
                        help="Remote debugging port (overrides --chrome/--edge)")(func)
    func = click.option("--edge", "-e", "browser", flag_value="edge", help="Use Microsoft Edge")(func)
    func = click.option("--chrome", "browser", flag_value="chrome", help="Use Google Chrome")(func)
    return func


def _browser_kind(browser):
    from tabquery.browser.models import BrowserKind
    return BrowserKind(browser) if browser else None


def _run(coro):
    """Run a coroutine, turning expected failures into a red message and exit code 1."""
    from playwright.async_api import Error as PlaywrightError
    from tabquery.browser.errors import BrowserError
    from tabquery.dom.errors import DomQueryError

    try:
        return asyncio.run(coro)
    except PlaywrightError as e:
        # Playwright appends a multi-line call log
        message = str(e).split("\n", 1)[0]
        console.print(f"[red]Error:[/red] {escape(message)}")
        sys.exit(1)
    except (BrowserError, DomQueryError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)


async def _with_browser(browser, port, action):
    """Connect, run ``action(manager)``, and always disconnect."""
    from tabquery.browser.manager import browser_manager

    try:
        await browser_manager.connect(browser=_browser_kind(browser), port=port)
        return await action(browser_manager)
    finally:
        await browser_manager.close_all()


@click.group()
@click.version_option(version=__version__, prog_name="tabquery")
@click.option("--log-level", default=None, help="Logging level (default: TABQUERY_LOG_LEVEL or WARNING)")
def main(log_level):
    """tabquery - query and manipulate DOM nodes in live browser tabs."""
    setup_logging(level=log_level)


@main.command()
@click.argument("selectors", nargs=-1, required=True)
@click.option("--script", "-s", "modify_script", default="",
              help="JavaScript run on each match with e (element), i (index), n (all matches)")
@click.option("--html", "html_file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Query a local HTML file instead of a live tab")
@click.option("--mode", type=click.Choice(["script", "handles"]), default="script",
              help="Walk the DOM in-page (script) or hop by hop from Python (handles)")
@click.option("--host-matches", is_flag=True, help="Also yield shadow hosts/iframes matched by the last selector")
@click.option("--descend", is_flag=True, help="Apply the next selector beneath plain elements too")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@browser_options
def query(selectors, modify_script, html_file, mode, host_matches, descend, as_json, browser, port):
    """Query DOM nodes with a chain of CSS selectors.

    Each extra selector crosses one shadow root or iframe boundary.
    """
    from tabquery.browser.models import QueryMode
    from tabquery.dom.models import TraversalOptions

    options = TraversalOptions(yield_host_matches=host_matches, descend_light_dom=descend)

    if html_file:
        if modify_script:
            console.print("[red]Error:[/red] --script needs a live browser tab")
            sys.exit(1)
        from tabquery.dom.soup import SoupDocument
        document = SoupDocument(Path(html_file).read_text(encoding="utf-8"))
        results = _run(document.collect(list(selectors), options=options))
    else:
        async def run(manager):
            return await manager.query_all(
                list(selectors), modify_script, mode=QueryMode(mode), options=options
            )
        results = _run(_with_browser(browser, port, run))

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2, default=str))
        return
    for result in results:
        if result.is_error:
            console.print(f"[red]{escape(result.error)}[/red]")
        else:
            click.echo(result.text)


@main.command()
@browser_options
def tabs(browser, port):
    """List the tabs of the connected browser."""
    async def run(manager):
        return await manager.list_tabs()

    tab_list = _run(_with_browser(browser, port, run))
    if not tab_list:
        console.print("[dim]No open tabs[/dim]")
        return

    table = Table(title="Browser Tabs")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Title", style="white")
    table.add_column("URL", style="dim")
    for tab in tab_list:
        table.add_row(
            str(tab.index),
            escape(tab.title),
            escape(tab.url[:60] + "..." if len(tab.url) > 60 else tab.url),
        )
    Console().print(table)


@main.command()
@click.argument("url")
@click.option("--tab", "tab_index", type=int, default=None, help="Tab index (default: first tab)")
@browser_options
def navigate(url, tab_index, browser, port):
    """Navigate a tab to URL."""
    async def run(manager):
        await manager.select_tab(index=tab_index)
        return await manager.navigate(url)

    action = _run(_with_browser(browser, port, run))
    if action.error:
        console.print(f"[red]✗[/red] Navigation failed: {escape(action.error)}")
        sys.exit(1)
    console.print(f"[green]✓[/green] {action.result['title']} ({action.result['url']})")


@main.command("close-tab")
@click.option("--tab", "tab_index", type=int, default=None, help="Tab index (default: first tab)")
@click.option("--pattern", default=None, help="Close the first tab whose URL or title matches this glob")
@browser_options
def close_tab(tab_index, pattern, browser, port):
    """Close a browser tab."""
    async def run(manager):
        await manager.select_tab(index=tab_index, pattern=pattern)
        return await manager.close_tab()

    action = _run(_with_browser(browser, port, run))
    if action.error:
        console.print(f"[red]✗[/red] Failed to close tab: {escape(action.error)}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Closed '{action.params['title']}'")


@main.command("pause-videos")
@browser_options
def pause_videos(browser, port):
    """Pause videos in every tab."""
    async def run(manager):
        return await manager.pause_videos()

    paused = _run(_with_browser(browser, port, run))
    console.print(f"[green]✓[/green] Paused {paused} video(s)")


@main.command("resume-video")
@click.option("--pattern", default="*youtube*", show_default=True, help="Glob matched against tab URL and title")
@browser_options
def resume_video(pattern, browser, port):
    """Resume video playback in the first matching tab."""
    async def run(manager):
        return await manager.resume_video(pattern)

    results = _run(_with_browser(browser, port, run))
    console.print(f"[green]✓[/green] Resumed {len(results)} video(s)")


@main.command("fullscreen-video")
@browser_options
def fullscreen_video(browser, port):
    """Stretch the first video of the first tab over the whole viewport."""
    async def run(manager):
        return await manager.set_video_fullscreen()

    if not _run(_with_browser(browser, port, run)):
        console.print("[yellow]No video found[/yellow]")
        sys.exit(1)
    console.print("[green]✓[/green] Video maximized")


@main.command("clear-site-data")
@click.option("--tab", "tab_index", type=int, default=None, help="Tab index (default: first tab)")
@browser_options
def clear_site_data(tab_index, browser, port):
    """Clear storage, cookies, caches and service workers of a tab's site."""
    async def run(manager):
        await manager.select_tab(index=tab_index)
        return await manager.clear_site_data()

    action = _run(_with_browser(browser, port, run))
    if action.error:
        console.print(f"[red]✗[/red] Failed to clear site data: {escape(action.error)}")
        sys.exit(1)
    cleared = ", ".join(f"{name}: {count}" for name, count in action.result.items())
    console.print(f"[green]✓[/green] Cleared site data for {escape(action.params['url'])} ({cleared})")


@main.command()
@click.option("--chrome", "browser", flag_value="chrome", help="Chrome's port")
@click.option("--edge", "-e", "browser", flag_value="edge", help="Edge's port")
def port(browser):
    """Print the remote debugging port that would be used."""
    from tabquery.browser.debugging import resolve_port
    click.echo(resolve_port(_browser_kind(browser)))


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8421, help="Port to bind to")
def serve(host, port):
    """Start the HTTP API server."""
    from tabquery.server import run_server

    console.print("[bold cyan]Starting tabquery server...[/bold cyan]")
    console.print(f"URL: http://{host if host != '0.0.0.0' else 'localhost'}:{port}/api/browser/status")
    run_server(host=host, port=port)


if __name__ == "__main__":
    main()
