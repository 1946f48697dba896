"""tabquery - query and manipulate DOM nodes in live browser tabs."""

__version__ = "0.1.0"
