"""
Errors raised by the browser connection layer.
"""


class BrowserError(Exception):
    """Base exception for browser connection and tab errors"""
    pass


class DebuggerUnavailableError(BrowserError):
    """Nothing answers the DevTools protocol on the expected port"""
    def __init__(self, host: str, port: int, reason: str = ""):
        self.host = host
        self.port = port
        message = f"No remote debugger listening on {host}:{port}"
        if reason:
            message += f": {reason}"
        message += ". Start the browser with --remote-debugging-port."
        super().__init__(message)


class NoTabSelectedError(BrowserError):
    """No tab is selected and auto-selection is disabled or impossible"""
    pass


class TabNotFoundError(BrowserError):
    """No tab matches the requested index or pattern"""
    pass
