"""Minimal event description used when sending events into rooms."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MEMBER_EVENT_TYPE = "m.room.member"


@dataclass
class Event:
    """An event to send.

    State events (``state_key`` is not None) are addressed by type and state
    key and replace any earlier event with the same address. Other events are
    addressed by the sending client's transaction ID.
    """

    type: str
    content: dict[str, Any] = field(default_factory=dict)
    state_key: str | None = None

    @property
    def is_state(self) -> bool:
        return self.state_key is not None


def is_membership(ev: Any, user_id: str, membership: str) -> bool:
    """True if `ev` is a membership event putting `user_id` in `membership`."""
    if not isinstance(ev, dict):
        return False
    content = ev.get("content")
    return (
        ev.get("type") == MEMBER_EVENT_TYPE
        and ev.get("state_key") == user_id
        and isinstance(content, dict)
        and content.get("membership") == membership
    )
