"""
Errors raised while querying DOM trees.
"""


class DomQueryError(Exception):
    """Base exception for DOM query errors"""
    pass


class SelectorSyntaxError(DomQueryError):
    """A CSS selector in the chain could not be parsed"""
    def __init__(self, selector: str, detail: str = ""):
        self.selector = selector
        self.detail = detail
        message = f"Invalid CSS selector: {selector!r}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class FrameAccessError(DomQueryError):
    """An iframe's inner document is unreachable (cross-origin or unloaded)"""
    pass


class ActionScriptError(DomQueryError):
    """A per-element action failed; the message is the stringified failure"""
    pass
