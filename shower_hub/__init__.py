"""Shower Hub: guest submissions and party mini-games for a baby shower."""

__version__ = "1.0.0"
