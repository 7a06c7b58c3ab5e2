# backend/app/repositories/__init__.py
"""
Repository layer for the update log.

Repositories take a Session and never commit; transaction boundaries belong
to the caller (see app.services.updates.log_store).
"""

from .user_update_repository import UserUpdateRepository

__all__ = ["UserUpdateRepository"]
