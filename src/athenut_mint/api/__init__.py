"""Operational HTTP surface."""

from athenut_mint.api.app import create_app

__all__ = ["create_app"]
