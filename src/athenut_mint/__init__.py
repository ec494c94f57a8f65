"""Athenut mint payment bridge."""

__version__ = "0.1.0"
