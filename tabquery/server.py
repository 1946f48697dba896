import os

from fastapi import FastAPI

from . import __version__
from .browser.api import router as browser_router
from .browser.manager import browser_manager
from .logging_config import setup_logging, get_logger

setup_logging()
logger = get_logger("tabquery.server")

app = FastAPI(title="tabquery", version=__version__)
app.include_router(browser_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@app.on_event("shutdown")
async def shutdown_event():
    """Graceful shutdown"""
    await browser_manager.close_all()
    logger.info("Browser connections closed")


def run_server(host: str = "127.0.0.1", port: int = 8421):
    """
    Run the tabquery API server.

    Args:
        host: Bind address. Default is 127.0.0.1 (localhost only); the API
              drives your real browser, so think twice before exposing it.
        port: Port to listen on (default: 8421)
    """
    import uvicorn

    if host == "0.0.0.0":
        logger.warning(
            "WARNING: Server is binding to 0.0.0.0. Anyone on the network can "
            "run scripts in your browser tabs."
        )

    uvicorn.run(app, host=host, port=port, log_level=os.environ.get("TABQUERY_LOG_LEVEL", "warning").lower())
