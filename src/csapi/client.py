"""A Matrix client-server API client for integration tests.

`CSAPI` acts as one user on a homeserver under test. Requests which must
succeed raise on any failure so the calling test fails with a useful
message; nothing is retried.

Usage:
    client = CSAPI.from_options(HarnessOptions(base_url="http://localhost:8008"))
    client.user_id, client.access_token = client.register_user("alice", "hunter2")

    room_id = client.create_room({"preset": "public_chat"})
    event_id = client.send_event_synced(
        room_id, Event(type="m.room.message", content={"msgtype": "m.text", "body": "hi"})
    )

Waiting for the server to converge:
    # Initial sync (no since token)
    bob.invite_room(room_id, alice.user_id)
    alice.join_room(room_id)
    alice.must_sync_until(SyncReq(), sync_joined_to(alice.user_id, room_id))

    # Incremental sync (the test controls the since token)
    since = alice.must_sync_until(SyncReq(timeout_millis=0))
    bob.invite_room(room_id, alice.user_id)
    since = alice.must_sync_until(SyncReq(since=since), sync_invited_to(alice.user_id, room_id))
    alice.join_room(room_id)
    alice.must_sync_until(SyncReq(since=since), sync_joined_to(alice.user_id, room_id))
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable
from urllib.parse import quote

import httpx

from . import jsonpath
from .checks import SyncCheck, sync_timeline_has
from .errors import HarnessConfigError, ProtocolError, SyncCheckError, SyncTimeoutError, TransportError
from .events import Event
from .extract import get_json_field_str, load_json, parse_json
from .logged import new_logged_client
from .options import DEFAULT_SYNC_UNTIL_TIMEOUT, HarnessOptions, SyncReq
from .request import RequestOpt, RequestParts, with_content_type, with_json_body, with_queries, with_raw_body

logger = logging.getLogger(__name__)

CLIENT_PREFIX = ["_matrix", "client", "r0"]
MEDIA_PREFIX = ["_matrix", "media", "r0"]

# RFC 3986 sub-delims plus ":@" are legal unescaped in a path segment.
_SEGMENT_SAFE = "!$&'()*+,;=:@"

DEFAULT_ROOM_VERSION = "1"


def escape_segment(segment: str) -> str:
    """Percent-escape a single path segment. ``/`` is always escaped."""
    return quote(segment, safe=_SEGMENT_SAFE)


def _is_textual(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.startswith("application/json") or content_type.startswith("text/")


@dataclass
class _PendingCheck:
    check: SyncCheck
    errs: list[str] = field(default_factory=list)


class CSAPI:
    """One user's view of a homeserver.

    Attributes:
        user_id: The Matrix user ID this client acts as (may be empty before registration).
        access_token: Bearer token attached to every request when set.
        base_url: Homeserver base URL without a trailing slash.
        sync_until_timeout: Seconds `must_sync_until` / `sync_until` wait before failing.
        debug: Log request and response bodies.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str = "",
        access_token: str = "",
        *,
        client: httpx.Client | None = None,
        sync_until_timeout: float = DEFAULT_SYNC_UNTIL_TIMEOUT,
        debug: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.access_token = access_token
        self.client = client if client is not None else httpx.Client(timeout=30.0)
        self.sync_until_timeout = sync_until_timeout
        self.debug = debug
        self._txn_id = 0

    @classmethod
    def from_options(
        cls,
        options: HarnessOptions,
        user_id: str = "",
        access_token: str = "",
    ) -> "CSAPI":
        """Create a client with a logged HTTP client from harness options."""
        if options.resolved_url is None:
            raise HarnessConfigError("no homeserver base URL configured")
        assert options.sync_until_timeout is not None
        http_client = new_logged_client(options.log_name, timeout=options.request_timeout)
        return cls(
            options.resolved_url,
            user_id,
            access_token,
            client=http_client,
            sync_until_timeout=options.sync_until_timeout,
            debug=bool(options.debug),
        )

    def with_credentials(self, user_id: str, access_token: str) -> "CSAPI":
        """Return a new client for another user, sharing the HTTP client."""
        return CSAPI(
            self.base_url,
            user_id,
            access_token,
            client=self.client,
            sync_until_timeout=self.sync_until_timeout,
            debug=self.debug,
        )

    def close(self) -> None:
        """Close HTTP client."""
        self.client.close()

    def __repr__(self) -> str:
        return f"CSAPI(user_id={self.user_id!r}, base_url={self.base_url!r})"

    # --- Transport ---

    def do_func(self, method: str, paths: Iterable[str], *opts: RequestOpt) -> httpx.Response:
        """Perform an arbitrary HTTP request to the server.

        Each element of `paths` is escaped independently. Use the ``with_*``
        modifiers from `csapi.request` to set a body, content type or query.
        The status code is not checked; see `must_do_func`.

        Raises:
            TransportError: The request could not be made.
        """
        url = self.base_url + "/" + "/".join(escape_segment(p) for p in paths)

        req = RequestParts()
        if self.access_token:
            req.set_header("Authorization", "Bearer " + self.access_token)
        for opt in opts:
            opt(req)
        if req.header("Content-Type") is None:
            req.set_header("Content-Type", "application/json")

        if self.debug:
            self._log_request(method, url, req)

        try:
            res = self.client.request(
                method,
                url,
                content=req.content,
                headers=req.headers,
                params=req.params or None,
            )
        except httpx.HTTPError as e:
            logger.warning("%s %s => error: %s", method, url, e)
            raise TransportError(method, url, e) from e

        if self.debug:
            self._log_response(res)
        return res

    def must_do_func(self, method: str, paths: Iterable[str], *opts: RequestOpt) -> httpx.Response:
        """Same as `do_func` but raises `ProtocolError` on a non-2xx response."""
        res = self.do_func(method, paths, *opts)
        if res.status_code < 200 or res.status_code >= 300:
            try:
                body = res.read().decode("utf-8", errors="replace")
            finally:
                res.close()
            errcode, error = _matrix_error(body)
            raise ProtocolError(
                method,
                str(res.request.url),
                res.status_code,
                body,
                errcode=errcode,
                error=error,
            )
        return res

    def must_do(self, method: str, paths: Iterable[str], json_body: Any = None) -> httpx.Response:
        """`must_do_func` with a JSON request body. `None` sends ``{}``."""
        return self.must_do_func(method, paths, with_json_body({} if json_body is None else json_body))

    def _log_request(self, method: str, url: str, req: RequestParts) -> None:
        logger.debug("Making %s request to %s", method, url)
        content_type = req.header("Content-Type")
        if _is_textual(content_type):
            if req.content is not None:
                logger.debug("Request body: %s", req.content.decode("utf-8", errors="replace"))
        else:
            logger.debug("Request body: <binary:%s>", content_type)

    def _log_response(self, res: httpx.Response) -> None:
        res.read()
        headers = "\n".join(f"{k}: {v}" for k, v in res.headers.items())
        content_type = res.headers.get("Content-Type")
        if _is_textual(content_type):
            body = res.text
        else:
            body = f"<binary:{content_type}>"
        logger.debug(
            "HTTP/1.1 %s %s\n%s\n\n%s", res.status_code, res.reason_phrase, headers, body
        )

    # --- Sync ---

    def must_sync(self, sync_req: SyncReq) -> tuple[dict[str, Any], str]:
        """Perform a single /sync request.

        Returns the parsed response and its ``next_batch`` token. To sync
        until something happens, see `must_sync_until`.
        """
        res = self.must_do_func("GET", [*CLIENT_PREFIX, "sync"], with_queries(sync_req.to_query()))
        response = load_json(res)
        next_batch = get_json_field_str(response, "next_batch")
        return response, next_batch

    def must_sync_until(self, sync_req: SyncReq, *checks: SyncCheck) -> str:
        """Sync repeatedly, advancing the since token, until every check passes.

        Checks are unordered and independent. Once a check passes it is
        retired and not called again for the rest of this call, even if a
        later response would fail it. To require several facts in a single
        response, write one check which tests them all. To require ordering,
        call this once per check and reuse the returned since token.

        A check signals failure by raising `SyncCheckError`; returning
        anything but None is a programming error.

        Returns:
            The latest since token.

        Raises:
            SyncTimeoutError: `sync_until_timeout` elapsed with checks pending.
            TypeError: A check returned a value instead of raising.
        """
        sync_req = replace(sync_req)
        start = time.monotonic()
        num_responses = 0
        pending = [_PendingCheck(check) for check in checks]

        while True:
            elapsed = time.monotonic() - start
            if elapsed > self.sync_until_timeout:
                raise SyncTimeoutError(
                    f"{self.user_id} MustSyncUntil: timed out after {elapsed:.3f}s. "
                    f"Seen {num_responses} /sync responses. {_format_pending(pending)}"
                )

            response, next_batch = self.must_sync(sync_req)
            sync_req.since = next_batch
            num_responses += 1

            still_pending = []
            for entry in pending:
                try:
                    result = entry.check(self.user_id, response)
                except SyncCheckError as e:
                    entry.errs.append(
                        f"[t={time.monotonic() - start:.3f}s] Response #{num_responses}: {e}"
                    )
                    still_pending.append(entry)
                    continue
                if result is not None:
                    raise TypeError(
                        f"sync check {entry.check!r} returned {result!r}; "
                        "sync checks signal failure by raising SyncCheckError and must return None"
                    )
            pending = still_pending

            if not pending:
                return sync_req.since

    def sync_until(
        self,
        since: str,
        filter: str,
        key: str,
        check: Callable[[Any], bool],
    ) -> str:
        """Sync until some element of the array at `key` passes `check`.

        Elements are tested one at a time and the first passing element ends
        the wait, even part way through a response. If `check` raises, the
        element it was looking at is logged before the error propagates.

        Returns:
            The ``next_batch`` token of the last response.
        """
        start = time.monotonic()
        check_counter = 0
        last_event: Any = None
        sync_req = SyncReq(since=since, filter=filter)

        while True:
            if time.monotonic() - start > self.sync_until_timeout:
                raise SyncTimeoutError(
                    f"SyncUntil: timed out. Called check function {check_counter} times"
                )
            response, sync_req.since = self.must_sync(sync_req)
            array = jsonpath.lookup(response, key)
            if not array.is_array():
                continue
            for ev in array.value:
                last_event = ev
                try:
                    passed = check(ev)
                except Exception:
                    logger.error("SyncUntil: failing event %s", json.dumps(last_event))
                    raise
                if passed:
                    return sync_req.since
                check_counter += 1

    # --- Scenario helpers ---

    def register_user(self, localpart: str, password: str) -> tuple[str, str]:
        """Register a user with dummy auth. Returns (user_id, access_token)."""
        body = {
            "auth": {"type": "m.login.dummy"},
            "username": localpart,
            "password": password,
        }
        res = self.must_do("POST", [*CLIENT_PREFIX, "register"], body)
        data = load_json(res)
        return get_json_field_str(data, "user_id"), get_json_field_str(data, "access_token")

    def create_room(self, creation_content: dict[str, Any] | None = None) -> str:
        """Create a room. Returns the room ID."""
        res = self.must_do("POST", [*CLIENT_PREFIX, "createRoom"], creation_content)
        return get_json_field_str(load_json(res), "room_id")

    def join_room(self, room_id_or_alias: str, server_names: Iterable[str] | None = None) -> str:
        """Join a room by ID or alias. Returns the room ID."""
        query = [("server_name", name) for name in server_names or []]
        res = self.must_do_func(
            "POST", [*CLIENT_PREFIX, "join", room_id_or_alias], with_queries(query)
        )
        if room_id_or_alias.startswith("!"):
            res.close()
            return room_id_or_alias
        # joined via an alias, so the server tells us the room ID
        return get_json_field_str(load_json(res), "room_id")

    def leave_room(self, room_id: str) -> None:
        """Leave a room."""
        self.must_do_func("POST", [*CLIENT_PREFIX, "rooms", room_id, "leave"]).close()

    def invite_room(self, room_id: str, user_id: str) -> None:
        """Invite `user_id` to a room."""
        self.must_do("POST", [*CLIENT_PREFIX, "rooms", room_id, "invite"], {"user_id": user_id}).close()

    def send_event(self, room_id: str, event: Event) -> str:
        """Send an event without waiting for it to come down /sync. Returns the event ID."""
        if event.is_state:
            assert event.state_key is not None
            paths = [*CLIENT_PREFIX, "rooms", room_id, "state", event.type, event.state_key]
        else:
            self._txn_id += 1
            paths = [*CLIENT_PREFIX, "rooms", room_id, "send", event.type, str(self._txn_id)]
        res = self.must_do("PUT", paths, event.content)
        return get_json_field_str(load_json(res), "event_id")

    def send_event_synced(self, room_id: str, event: Event) -> str:
        """Send an event and wait for its event ID to come down /sync.

        Returns the event ID of the sent event.
        """
        event_id = self.send_event(room_id, event)
        logger.info("SendEventSynced waiting for event ID %s", event_id)
        self.must_sync_until(
            SyncReq(),
            sync_timeline_has(room_id, lambda ev: isinstance(ev, dict) and ev.get("event_id") == event_id),
        )
        return event_id

    def upload_content(self, file_body: bytes, file_name: str, content_type: str) -> str:
        """Upload media. Returns the MXC URI."""
        query = {"filename": file_name} if file_name else {}
        res = self.must_do_func(
            "POST",
            [*MEDIA_PREFIX, "upload"],
            with_raw_body(file_body),
            with_content_type(content_type),
            with_queries(query),
        )
        return get_json_field_str(load_json(res), "content_uri")

    def download_content(self, mxc_uri: str) -> tuple[bytes, str]:
        """Download media. Returns (raw bytes, Content-Type)."""
        origin, _, media_id = mxc_uri.removeprefix("mxc://").partition("/")
        res = self.must_do("GET", [*MEDIA_PREFIX, "download", origin, media_id])
        try:
            return res.read(), res.headers.get("Content-Type", "")
        finally:
            res.close()

    def get_capabilities(self) -> bytes:
        """Query the server's capabilities. Returns the raw response body."""
        res = self.must_do_func("GET", [*CLIENT_PREFIX, "capabilities"])
        return parse_json(res)

    def get_default_room_version(self) -> str:
        """The server's default room version, "1" if it does not say."""
        res = self.must_do_func("GET", [*CLIENT_PREFIX, "capabilities"])
        capabilities = load_json(res)
        default = jsonpath.lookup(capabilities, "capabilities.m\\.room_versions.default")
        if not default.exists:
            return DEFAULT_ROOM_VERSION
        return default.string


def _format_pending(pending: list[_PendingCheck]) -> str:
    out = "Checkers:\n"
    for entry in pending:
        out += "\n".join(entry.errs)
        out += ", "
    return out


def _matrix_error(body: str) -> tuple[str | None, str | None]:
    """Pull ``errcode`` and ``error`` out of a Matrix error body, if present."""
    try:
        data = json.loads(body)
    except ValueError:
        return None, None
    if not isinstance(data, dict):
        return None, None
    errcode = data.get("errcode")
    error = data.get("error")
    return (
        errcode if isinstance(errcode, str) else None,
        error if isinstance(error, str) else None,
    )
