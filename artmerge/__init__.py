"""Multi-pack artwork merge tool."""

__version__ = "0.3.1"
