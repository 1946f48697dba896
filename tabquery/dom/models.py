"""
DOM query data models.
"""
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional, Tuple, Union


@dataclass(frozen=True)
class SelectorChain:
    """Ordered CSS selectors; position i is one hop across a shadow root or frame."""
    selectors: Tuple[str, ...]

    def __post_init__(self):
        if not self.selectors:
            raise ValueError("Selector chain must contain at least one selector")
        for selector in self.selectors:
            if not isinstance(selector, str) or not selector.strip():
                raise ValueError(f"Selectors must be non-empty strings, got {selector!r}")

    @classmethod
    def coerce(cls, value: Union["SelectorChain", str, Iterable[str]]) -> "SelectorChain":
        if isinstance(value, SelectorChain):
            return value
        if isinstance(value, str):
            return cls((value,))
        return cls(tuple(value))

    def __len__(self) -> int:
        return len(self.selectors)

    def __getitem__(self, index: int) -> str:
        return self.selectors[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self.selectors)

    def is_last(self, depth: int) -> bool:
        return depth == len(self.selectors) - 1

    def to_list(self) -> list:
        return list(self.selectors)


@dataclass
class TraversalOptions:
    """Switches for the two boundary behaviours of the traversal."""
    # Yield a last-selector match that is itself a shadow host or iframe
    # before recursing into it. Off: such hosts never produce a result.
    yield_host_matches: bool = False
    # Query the next selector beneath a plain (non-host, non-frame) element.
    # Off: such an element contributes nothing when selectors remain.
    descend_light_dom: bool = False

    def to_dict(self) -> dict:
        return {
            "yield_host_matches": self.yield_host_matches,
            "descend_light_dom": self.descend_light_dom,
        }


@dataclass
class MatchResult:
    """One terminal match: serialized markup, an action's return value, or its error."""
    value: Any = None
    index: int = 0
    depth: int = 0
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def text(self) -> str:
        if self.error is not None:
            return self.error
        if self.value is None:
            return ""
        if isinstance(self.value, str):
            return self.value
        return str(self.value)

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "index": self.index,
            "depth": self.depth,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchResult":
        return cls(
            value=data.get("value"),
            index=data.get("index", 0),
            depth=data.get("depth", 0),
            error=data.get("error"),
        )
