"""Babylon Fin billing core: license lifecycle rules and state persistence."""

__version__ = "0.1.0"
