# backend/app/schemas/__init__.py
"""Pydantic schemas for the update-delivery API."""

from .updates import (
    EphemeralEnvelope,
    UpdateEnvelope,
    UpdateNotice,
    UpdatesDiff,
    UpdatesDiffRequest,
    UpdatesDiffResponse,
)

__all__ = [
    "EphemeralEnvelope",
    "UpdateEnvelope",
    "UpdateNotice",
    "UpdatesDiff",
    "UpdatesDiffRequest",
    "UpdatesDiffResponse",
]
