"""API routes module."""

from . import enrichment, health

__all__ = ["enrichment", "health"]
