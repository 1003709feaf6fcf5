"""Backends that bind candidate functions for their models."""

from .mock import MockBackend

__all__ = ["MockBackend"]
