"""
Database models for the update-delivery backend.

Business entities (organizations, channels, messages) live in their own
services; this package only owns the per-user update log.
"""

from .user_update import SEQNO_UNIQUE_CONSTRAINT, UserUpdate

__all__ = [
    "SEQNO_UNIQUE_CONSTRAINT",
    "UserUpdate",
]
