"""Utility helpers shared across the server."""

from .logging import mask_sensitive, setup_logging

__all__ = ["mask_sensitive", "setup_logging"]
