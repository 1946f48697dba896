"""
Browser tab API endpoints.
"""
from typing import List, Optional, Union
from fastapi import APIRouter, HTTPException
from playwright.async_api import Error as PlaywrightError
from pydantic import BaseModel, Field

from ..dom.errors import SelectorSyntaxError
from ..dom.models import TraversalOptions
from .errors import BrowserError, DebuggerUnavailableError, NoTabSelectedError, TabNotFoundError
from .manager import browser_manager
from .models import BrowserKind, QueryMode

router = APIRouter(prefix="/api/browser", tags=["browser"])


# ==================== Request Models ====================

class ConnectRequest(BaseModel):
    browser: Optional[str] = Field(None, max_length=20)
    port: Optional[int] = Field(None, ge=1, le=65535)
    host: Optional[str] = Field(None, max_length=255)


class SelectTabRequest(BaseModel):
    index: Optional[int] = Field(None, ge=0)
    pattern: Optional[str] = Field(None, max_length=500)


class NavigateRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2000)
    no_auto_select: bool = False


class QueryRequest(BaseModel):
    selectors: Union[str, List[str]]
    modify_script: str = Field("", max_length=50000)
    mode: str = Field("script", max_length=20)
    yield_host_matches: bool = False
    descend_light_dom: bool = False
    no_auto_select: bool = False


class ResumeVideoRequest(BaseModel):
    pattern: str = Field("*youtube*", min_length=1, max_length=500)


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, PlaywrightError):
        message = str(e).split("\n", 1)[0]
        return HTTPException(status_code=502, detail=f"Browser error: {message}")
    if isinstance(e, DebuggerUnavailableError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, (TabNotFoundError, NoTabSelectedError)):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ==================== Connection Endpoints ====================

@router.post("/connect")
async def connect(request: ConnectRequest = ConnectRequest()):
    """Attach to a running browser over CDP."""
    browser = None
    if request.browser:
        try:
            browser = BrowserKind(request.browser.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid browser: {request.browser}")
    try:
        connection = await browser_manager.connect(browser=browser, port=request.port, host=request.host)
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"success": True, "connection": connection.to_dict()}


@router.get("/status")
async def browser_status():
    """Get connection status."""
    return browser_manager.status()


# ==================== Tab Endpoints ====================

@router.get("/tabs")
async def list_tabs():
    """List the tabs of the connected browser."""
    tabs = await browser_manager.list_tabs()
    return {"tabs": [t.to_dict() for t in tabs], "count": len(tabs)}


@router.post("/tabs/select")
async def select_tab(request: SelectTabRequest = SelectTabRequest()):
    """Select a tab by index or URL/title pattern."""
    try:
        tab = await browser_manager.select_tab(index=request.index, pattern=request.pattern)
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"success": True, "tab": tab.to_dict()}


@router.post("/tabs/close")
async def close_tab():
    """Close the selected tab."""
    try:
        action = await browser_manager.close_tab(no_auto_select=True)
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"success": action.error is None, "action": action.to_dict()}


@router.post("/navigate")
async def navigate(request: NavigateRequest):
    """Navigate the selected tab."""
    try:
        action = await browser_manager.navigate(request.url, no_auto_select=request.no_auto_select)
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"success": action.error is None, "action": action.to_dict()}


# ==================== Query Endpoint ====================

@router.post("/query")
async def query_dom(request: QueryRequest):
    """Query DOM nodes in the selected tab, optionally running a script on each."""
    try:
        mode = QueryMode(request.mode)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid query mode: {request.mode}")

    options = TraversalOptions(
        yield_host_matches=request.yield_host_matches,
        descend_light_dom=request.descend_light_dom,
    )
    try:
        results = await browser_manager.query_all(
            request.selectors,
            request.modify_script,
            mode=mode,
            options=options,
            no_auto_select=request.no_auto_select,
        )
    except SelectorSyntaxError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"results": [r.to_dict() for r in results], "count": len(results)}


# ==================== Video Endpoints ====================

@router.post("/videos/pause")
async def pause_videos():
    """Pause videos in every tab."""
    try:
        paused = await browser_manager.pause_videos()
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"success": True, "paused": paused}


@router.post("/videos/resume")
async def resume_video(request: ResumeVideoRequest = ResumeVideoRequest()):
    """Resume videos in the first tab matching the pattern."""
    try:
        results = await browser_manager.resume_video(request.pattern)
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"success": True, "videos": len(results)}


@router.post("/videos/fullscreen")
async def fullscreen_video():
    """Stretch the selected tab's first video over the viewport."""
    try:
        found = await browser_manager.set_video_fullscreen()
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"success": found}


# ==================== History Endpoint ====================

@router.get("/history")
async def get_action_history(limit: int = 50):
    """Get the browser action history."""
    history = browser_manager.get_action_history(limit=limit)
    return {"actions": history, "count": len(history)}


# ==================== Site Data Endpoint ====================

@router.post("/site-data/clear")
async def clear_site_data():
    """Clear storage, cookies, caches and service workers of the selected tab's site."""
    try:
        action = await browser_manager.clear_site_data()
    except (BrowserError, PlaywrightError) as e:
        raise _http_error(e)
    return {"success": action.error is None, "action": action.to_dict()}
