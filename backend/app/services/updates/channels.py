# backend/app/services/updates/channels.py
"""Pub/sub channel names. Channels are per user, never per organization."""

from typing import Iterable, List

DURABLE_CHANNEL_PREFIX = "updates:"
EPHEMERAL_CHANNEL_PREFIX = "updates-ephemeral:"


def durable_channel(user_id: str) -> str:
    return f"{DURABLE_CHANNEL_PREFIX}{user_id}"


def ephemeral_channel(user_id: str) -> str:
    return f"{EPHEMERAL_CHANNEL_PREFIX}{user_id}"


def unique_user_ids(user_ids: Iterable[str]) -> List[str]:
    """Drop duplicates and blanks, keeping first-occurrence order."""
    seen: set[str] = set()
    ordered: List[str] = []
    for user_id in user_ids:
        if not user_id or user_id in seen:
            continue
        seen.add(user_id)
        ordered.append(user_id)
    return ordered
