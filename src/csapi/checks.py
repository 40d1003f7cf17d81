"""Checks for use with `CSAPI.must_sync_until`.

A check is called with the syncing client's user ID and the parsed /sync
response. It returns None if the response satisfies it and raises
`SyncCheckError` with a human friendly explanation otherwise:

    alice.must_sync_until(
        SyncReq(),
        sync_joined_to(alice.user_id, room_id),
        sync_timeline_has(room_id, lambda ev: ev.get("type") == "m.room.message"),
    )

Checks only see the slice of the event stream in the response they are
handed. Anything consumed by an earlier sync is not seen again.
"""

from __future__ import annotations

import json
from typing import Any, Callable

from . import jsonpath
from .errors import SyncCheckError
from .events import is_membership

SyncCheck = Callable[[str, Any], None]
EventCheck = Callable[[Any], bool]

# Upper bound on how much of an unmatched array is echoed into diagnostics.
MAX_DUMP_CHARS = 4096


def _dump(value: Any) -> str:
    raw = json.dumps(value, separators=(",", ":"))
    if len(raw) > MAX_DUMP_CHARS:
        return raw[:MAX_DUMP_CHARS] + f"... ({len(raw) - MAX_DUMP_CHARS} more chars)"
    return raw


def loop_array(document: Any, key: str, check: EventCheck) -> None:
    """Pass if any element of the array at `key` satisfies `check`."""
    array = jsonpath.lookup(document, key)
    if not array.exists:
        raise SyncCheckError(f"Key {key} does not exist")
    if not array.is_array():
        raise SyncCheckError(f"Key {key} exists but it isn't an array")
    for ev in array.value:
        if check(ev):
            return
    raise SyncCheckError(
        f"check function did not pass for {len(array.value)} elements: {_dump(array.value)}"
    )


def sync_timeline_has(room_id: str, check: EventCheck) -> SyncCheck:
    """Check that the timeline for `room_id` has an event which passes `check`."""

    def _check(client_user_id: str, sync_json: Any) -> None:
        key = "rooms.join." + jsonpath.escape(room_id) + ".timeline.events"
        try:
            loop_array(sync_json, key, check)
        except SyncCheckError as e:
            raise SyncCheckError(f"SyncTimelineHas({room_id}): {e}") from e

    return _check


def sync_invited_to(user_id: str, room_id: str) -> SyncCheck:
    """Check that `user_id` gets invited to `room_id`.

    The part of the response inspected depends on who is syncing. The invitee
    sees the invite in the ``invite`` block; anyone else in the room sees the
    membership event in the ``join`` timeline.
    """

    def _is_invite(ev: Any) -> bool:
        return is_membership(ev, user_id, "invite")

    def _check(client_user_id: str, sync_json: Any) -> None:
        if client_user_id == user_id:
            _check_invitee(sync_json)
        else:
            sync_timeline_has(room_id, _is_invite)(client_user_id, sync_json)

    def _check_invitee(sync_json: Any) -> None:
        key = "rooms.invite." + jsonpath.escape(room_id) + ".invite_state.events"
        try:
            loop_array(sync_json, key, _is_invite)
        except SyncCheckError as e:
            raise SyncCheckError(f"SyncInvitedTo({room_id}): {e}") from e

    return _check


def sync_joined_to(user_id: str, room_id: str) -> SyncCheck:
    """Check that `user_id` joins `room_id`, via the join timeline."""

    def _check(client_user_id: str, sync_json: Any) -> None:
        try:
            sync_timeline_has(room_id, lambda ev: is_membership(ev, user_id, "join"))(
                client_user_id, sync_json
            )
        except SyncCheckError as e:
            raise SyncCheckError(f"SyncJoinedTo({user_id},{room_id}): {e}") from e

    return _check


def sync_left_from(user_id: str, room_id: str) -> SyncCheck:
    """Check that `user_id` leaves `room_id`.

    Only works for observers who are still joined; the leaver's own sync
    reports the room under ``rooms.leave``.
    """

    def _check(client_user_id: str, sync_json: Any) -> None:
        try:
            sync_timeline_has(room_id, lambda ev: is_membership(ev, user_id, "leave"))(
                client_user_id, sync_json
            )
        except SyncCheckError as e:
            raise SyncCheckError(f"SyncLeftFrom({user_id},{room_id}): {e}") from e

    return _check


def sync_global_account_data_has(check: EventCheck) -> SyncCheck:
    """Check that a global account data event passes `check`."""

    def _check(client_user_id: str, sync_json: Any) -> None:
        loop_array(sync_json, "account_data.events", check)

    return _check
