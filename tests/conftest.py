"""Shared pytest configuration and fixtures."""

import json
import os

# Keep the developer's environment out of the tests
for _var in ("CSAPI_BASE_URL", "CSAPI_HS_NAME", "CSAPI_SYNC_TIMEOUT", "CSAPI_DEBUG", "CSAPI_CONFIG"):
    os.environ.pop(_var, None)

import httpx
import pytest

from csapi.client import CSAPI

BASE_URL = "http://hs.test"


class ScriptedHomeserver:
    """A MockTransport handler with canned /sync responses.

    Sync bodies are served in order; once exhausted, empty responses are
    returned. A ``next_batch`` of ``s<n>`` is filled in for the n-th response
    unless the scripted body sets one.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.sync_bodies: list[dict] = []
        self.sync_count = 0
        self.routes: dict[tuple[str, str], object] = {}

    def route(self, method: str, path: str, response) -> None:
        """Serve `response` (an httpx.Response or a callable of the request) for method+raw path."""
        self.routes[(method, path)] = response

    @property
    def sync_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/_matrix/client/r0/sync"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        raw_path = request.url.raw_path.split(b"?")[0].decode("ascii")

        if request.method == "GET" and raw_path == "/_matrix/client/r0/sync":
            self.sync_count += 1
            body = dict(self.sync_bodies.pop(0)) if self.sync_bodies else {}
            body.setdefault("next_batch", f"s{self.sync_count}")
            return httpx.Response(200, json=body)

        route = self.routes.get((request.method, raw_path))
        if route is None:
            return httpx.Response(
                404, json={"errcode": "M_UNRECOGNIZED", "error": f"no route {raw_path}"}
            )
        if callable(route):
            return route(request)
        return route


def timeline(room_id: str, *events: dict) -> dict:
    """A /sync body with `events` in the join timeline of `room_id`."""
    return {"rooms": {"join": {room_id: {"timeline": {"events": list(events)}}}}}


def member_event(user_id: str, membership: str, **extra) -> dict:
    ev = {
        "type": "m.room.member",
        "state_key": user_id,
        "content": {"membership": membership},
    }
    ev.update(extra)
    return ev


def request_json(request: httpx.Request):
    return json.loads(request.content) if request.content else None


@pytest.fixture
def hs():
    """A scripted homeserver."""
    return ScriptedHomeserver()


@pytest.fixture
def client(hs):
    """A client for @alice:hs.test talking to the scripted homeserver."""
    c = CSAPI(
        BASE_URL,
        "@alice:hs.test",
        "alice_token",
        client=httpx.Client(transport=httpx.MockTransport(hs.handler)),
        sync_until_timeout=2.0,
    )
    yield c
    c.close()
