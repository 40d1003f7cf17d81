"""CLI for poking at a homeserver under test.

Reads the homeserver from the harness config (see `csapi.config`) or
CSAPI_BASE_URL. Commands which act as a user take --user-id and --token,
falling back to CSAPI_USER_ID / CSAPI_ACCESS_TOKEN. Set CSAPI_LOG_LEVEL=INFO
to see each request, or DEBUG with CSAPI_DEBUG=1 for bodies too.

    csapi register alice --password secret
    csapi create-room --token syt_...
    csapi send '!room:hs1' m.room.message '{"msgtype": "m.text", "body": "hi"}'
    csapi sync --since s72594_4483_1934
    csapi wait-joined '!room:hs1' @bob:hs1
"""

from __future__ import annotations

import json
import logging
import os
import sys

import cyclopts

from .checks import sync_joined_to
from .client import CSAPI
from .config import HarnessConfig, Homeserver, get_config_path
from .errors import CSAPIError
from .events import Event
from .options import Presence, SyncReq

app = cyclopts.App(
    name="csapi",
    help="Matrix client-server API harness",
)


def print_json(data):
    """Pretty print JSON data."""
    print(json.dumps(data, indent=2, default=str))


def get_client(
    homeserver: str | None = None,
    user_id: str | None = None,
    token: str | None = None,
) -> CSAPI:
    """Build a client for the configured homeserver or exit with an error."""
    level = os.environ.get("CSAPI_LOG_LEVEL")
    if level:
        logging.basicConfig(level=level.upper(), format="%(asctime)s %(name)s %(message)s")
    try:
        options = HarnessConfig.load().to_options(homeserver)
        return CSAPI.from_options(
            options,
            user_id=user_id or os.environ.get("CSAPI_USER_ID", ""),
            access_token=token or os.environ.get("CSAPI_ACCESS_TOKEN", ""),
        )
    except CSAPIError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1) from e


def _run(fn):
    """Run a client operation, turning harness errors into exit code 1."""
    try:
        return fn()
    except CSAPIError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1) from e


@app.command
def config(*, add: str | None = None, url: str | None = None, default: bool = False):
    """Show or edit the harness configuration.

    --add NAME --url URL: Add (or replace) a homeserver entry
    --default: Make the added homeserver the default
    """
    cfg = _run(HarnessConfig.load)
    if add:
        if not url:
            raise cyclopts.ValidationError("--add requires --url")
        cfg.add_homeserver(Homeserver(name=add, base_url=url))
        if default:
            cfg.default_homeserver = add
        path = cfg.save()
        print(f"Saved {add} to {path}")
        return

    print(f"Config file: {get_config_path()}")
    print(f"Sync timeout: {cfg.sync_until_timeout}s")
    print(f"Debug: {cfg.debug}")
    if not cfg.homeservers:
        print("No homeservers configured")
    for hs in cfg.homeservers:
        marker = " (default)" if hs.name == cfg.default_homeserver else ""
        print(f"  {hs.name}: {hs.base_url}{marker}")


@app.command
def register(localpart: str, *, password: str, homeserver: str | None = None):
    """Register a user with dummy auth and print its credentials."""
    client = get_client(homeserver)
    user_id, access_token = _run(lambda: client.register_user(localpart, password))
    print_json({"user_id": user_id, "access_token": access_token})


@app.command
def create_room(
    content_json: str | None = None,
    *,
    user_id: str | None = None,
    token: str | None = None,
    homeserver: str | None = None,
):
    """Create a room and print its ID.

    CONTENT_JSON: Optional /createRoom request body
    """
    content = json.loads(content_json) if content_json else {}
    client = get_client(homeserver, user_id, token)
    print(_run(lambda: client.create_room(content)))


@app.command
def send(
    room_id: str,
    event_type: str,
    content_json: str = "{}",
    *,
    state_key: str | None = None,
    wait: bool = False,
    user_id: str | None = None,
    token: str | None = None,
    homeserver: str | None = None,
):
    """Send an event into a room and print its event ID.

    --state-key: Send as a state event
    --wait: Block until the event comes down /sync
    """
    event = Event(type=event_type, content=json.loads(content_json), state_key=state_key)
    client = get_client(homeserver, user_id, token)
    if wait:
        print(_run(lambda: client.send_event_synced(room_id, event)))
    else:
        print(_run(lambda: client.send_event(room_id, event)))


@app.command
def sync(
    *,
    since: str = "",
    filter: str = "",
    full_state: bool = False,
    presence: Presence | None = None,
    timeout_ms: int = 1000,
    user_id: str | None = None,
    token: str | None = None,
    homeserver: str | None = None,
):
    """Perform one /sync and print the response."""
    client = get_client(homeserver, user_id, token)
    req = SyncReq(
        since=since,
        filter=filter,
        full_state=full_state,
        set_presence=presence,
        timeout_millis=timeout_ms,
    )
    response, _ = _run(lambda: client.must_sync(req))
    print_json(response)


@app.command
def wait_joined(
    room_id: str,
    member: str,
    *,
    since: str = "",
    user_id: str | None = None,
    token: str | None = None,
    homeserver: str | None = None,
):
    """Sync until MEMBER's join to ROOM_ID is seen, then print the since token."""
    client = get_client(homeserver, user_id, token)
    print(_run(lambda: client.must_sync_until(SyncReq(since=since), sync_joined_to(member, room_id))))


if __name__ == "__main__":
    app()
