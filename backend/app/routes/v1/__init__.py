# backend/app/routes/v1/__init__.py
"""Versioned update-delivery routes."""

from . import updates

__all__ = ["updates"]
