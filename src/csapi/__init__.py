"""csapi - a Matrix client-server API client for integration tests.

Usage:
    from csapi import CSAPI, HarnessOptions, SyncReq
    from csapi.checks import sync_joined_to

    alice = CSAPI.from_options(HarnessOptions(base_url="http://localhost:8008"))
    alice.user_id, alice.access_token = alice.register_user("alice", "password")

    room_id = alice.create_room({"preset": "public_chat"})
    alice.must_sync_until(SyncReq(), sync_joined_to(alice.user_id, room_id))
"""

from csapi._version import __version__
from csapi.client import CSAPI
from csapi.config import HarnessConfig, Homeserver
from csapi.errors import (
    CSAPIError,
    HarnessConfigError,
    MalformedResponseError,
    ProtocolError,
    SyncCheckError,
    SyncTimeoutError,
    TransportError,
)
from csapi.events import Event
from csapi.options import HarnessOptions, Presence, SyncReq

__all__ = [
    "__version__",
    "CSAPI",
    "Event",
    "HarnessConfig",
    "HarnessOptions",
    "Homeserver",
    "Presence",
    "SyncReq",
    "CSAPIError",
    "HarnessConfigError",
    "MalformedResponseError",
    "ProtocolError",
    "SyncCheckError",
    "SyncTimeoutError",
    "TransportError",
]
