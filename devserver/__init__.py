"""Local dev server container lifecycle engine."""

__version__ = "0.1.0"
