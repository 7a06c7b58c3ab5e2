"""
Dialect detection for sessions.

Seqno allocation only takes advisory locks on PostgreSQL, so repositories
need the dialect of whatever the session is bound to (engine in production,
shared connection in tests).
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


def _session_bind(session: Session) -> Optional[Connection | Engine]:
    try:
        return session.get_bind()
    except SQLAlchemyError:
        return None


def get_dialect_name(session: Session, default: str = "postgresql") -> str:
    """Return the bound dialect name, or ``default`` when the session has no bind."""
    bind = _session_bind(session)
    dialect = getattr(bind, "dialect", None)
    name = getattr(dialect, "name", None)
    return name or default
