"""Tests for /sync requests and the sync loops."""

import json
import logging

import httpx
import pytest

from csapi.checks import sync_joined_to, sync_timeline_has
from csapi.client import CSAPI
from csapi.errors import FieldTypeError, MissingFieldError, ProtocolError, SyncCheckError, SyncTimeoutError
from csapi.options import Presence, SyncReq

from conftest import member_event, timeline

ROOM = "!room:hs.test"


def since_params(hs):
    return [r.url.params.get("since") for r in hs.sync_requests]


class TestMustSync:
    def test_defaults(self, client, hs):
        response, next_batch = client.must_sync(SyncReq())
        assert next_batch == "s1"
        assert response == {"next_batch": "s1"}

        params = hs.sync_requests[0].url.params
        assert params["timeout"] == "1000"
        assert "since" not in params
        assert "filter" not in params
        assert "full_state" not in params
        assert "set_presence" not in params

    def test_all_options(self, client, hs):
        client.must_sync(
            SyncReq(
                since="s9",
                filter='{"room":{"timeline":{"limit":1}}}',
                full_state=True,
                set_presence=Presence.UNAVAILABLE,
                timeout_millis=0,
            )
        )
        params = hs.sync_requests[0].url.params
        assert params["since"] == "s9"
        assert params["filter"] == '{"room":{"timeline":{"limit":1}}}'
        assert params["full_state"] == "true"
        assert params["set_presence"] == "unavailable"
        assert params["timeout"] == "0"

    def test_sends_access_token_as_header(self, client, hs):
        client.must_sync(SyncReq())
        request = hs.sync_requests[0]
        assert request.headers["Authorization"] == "Bearer alice_token"
        assert "access_token" not in request.url.params

    def test_null_next_batch(self, client, hs):
        hs.sync_bodies.append({"next_batch": None})
        with pytest.raises(FieldTypeError, match="not a string"):
            client.must_sync(SyncReq())

    def test_non_200(self, hs):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(401, json={"errcode": "M_UNKNOWN_TOKEN", "error": "bad"})
        )
        c = CSAPI("http://hs.test", client=httpx.Client(transport=transport))
        with pytest.raises(ProtocolError) as exc:
            c.must_sync(SyncReq())
        assert exc.value.status_code == 401
        assert exc.value.errcode == "M_UNKNOWN_TOKEN"

    def test_body_decoded_once(self, client, hs, monkeypatch):
        calls = []
        real_loads = json.loads

        def counting_loads(*args, **kwargs):
            calls.append(args)
            return real_loads(*args, **kwargs)

        monkeypatch.setattr(json, "loads", counting_loads)
        hs.sync_bodies.append(timeline(ROOM, {"event_id": "$a"}))
        response, _ = client.must_sync(SyncReq())
        assert response["rooms"]["join"][ROOM]["timeline"]["events"] == [{"event_id": "$a"}]
        assert len(calls) == 1

    def test_one_request_per_call(self, client, hs):
        client.must_sync(SyncReq())
        assert len(hs.requests) == 1


class TestMustSyncUntil:
    def test_no_checks_syncs_once(self, client, hs):
        since = client.must_sync_until(SyncReq(timeout_millis=0))
        assert since == "s1"
        assert hs.sync_count == 1

    def test_token_advances_every_step(self, client, hs):
        hs.sync_bodies.extend([{}, {}, timeline(ROOM, {"event_id": "$abc"})])
        since = client.must_sync_until(
            SyncReq(), sync_timeline_has(ROOM, lambda ev: ev["event_id"] == "$abc")
        )
        assert since == "s3"
        assert since_params(hs) == [None, "s1", "s2"]

    def test_starts_from_given_token(self, client, hs):
        hs.sync_bodies.extend([{}, timeline(ROOM, member_event("@bob:hs.test", "join"))])
        client.must_sync_until(SyncReq(since="s100"), sync_joined_to("@bob:hs.test", ROOM))
        assert since_params(hs) == ["s100", "s1"]

    def test_does_not_mutate_request(self, client, hs):
        req = SyncReq(since="s0")
        client.must_sync_until(req)
        assert req.since == "s0"

    def test_passed_check_is_retired(self, client, hs):
        hs.sync_bodies.extend([{"x": 1}, {}, {}, {"y": 1}])
        calls = {"x": 0, "y": 0}

        def has(key):
            def check(user_id, body):
                calls[key] += 1
                if key not in body:
                    raise SyncCheckError(f"no {key}")

            return check

        client.must_sync_until(SyncReq(), has("x"), has("y"))
        assert calls["x"] == 1
        assert calls["y"] == 4

    def test_retired_check_not_called_when_later_response_would_fail(self, client, hs):
        hs.sync_bodies.extend([timeline(ROOM, {"event_id": "$a"}), {}, {"done": True}])
        seen = []

        def first(user_id, body):
            seen.append(body["next_batch"])
            sync_timeline_has(ROOM, lambda ev: True)(user_id, body)

        def last(user_id, body):
            if not body.get("done"):
                raise SyncCheckError("not done")

        client.must_sync_until(SyncReq(), first, last)
        assert seen == ["s1"]

    def test_checks_are_independent_within_a_response(self, client, hs):
        hs.sync_bodies.extend([{"a": 1, "b": 1}, {"c": 1}])
        order = []

        def make(key):
            def check(user_id, body):
                order.append(key)
                if key not in body:
                    raise SyncCheckError(key)

            return check

        since = client.must_sync_until(SyncReq(), make("a"), make("b"), make("c"), make("a"))
        assert since == "s2"
        assert order == ["a", "b", "c", "a", "c"]

    def test_passes_subject_user_id(self, client, hs):
        seen = []
        client.must_sync_until(SyncReq(), lambda user_id, body: seen.append(user_id))
        assert seen == ["@alice:hs.test"]

    def test_timeout_reports_history(self, client, hs):
        client.sync_until_timeout = 0.2
        hs.sync_bodies.extend([{}, timeline(ROOM, {"event_id": "$other"})])
        with pytest.raises(SyncTimeoutError) as exc:
            client.must_sync_until(
                SyncReq(), sync_timeline_has(ROOM, lambda ev: ev["event_id"] == "$never")
            )
        msg = str(exc.value)
        assert "@alice:hs.test MustSyncUntil: timed out after" in msg
        assert f"Seen {hs.sync_count} /sync responses" in msg
        assert "Response #1: SyncTimelineHas(!room:hs.test): Key rooms.join" in msg
        assert "Response #2: SyncTimelineHas(!room:hs.test): check function did not pass" in msg
        assert "[t=" in msg

    def test_timeout_only_lists_pending_checks(self, client, hs):
        client.sync_until_timeout = 0.2
        hs.sync_bodies.append({"x": 1})

        def has_x(user_id, body):
            if "x" not in body:
                raise SyncCheckError("retired check message")

        def never(user_id, body):
            raise SyncCheckError("pending check message")

        with pytest.raises(SyncTimeoutError) as exc:
            client.must_sync_until(SyncReq(), has_x, never)
        assert "pending check message" in str(exc.value)
        assert "retired check message" not in str(exc.value)

    def test_success_never_times_out(self, client, hs):
        client.sync_until_timeout = 0.5
        hs.sync_bodies.extend([{}, {}, {"x": 1}])

        def has_x(user_id, body):
            if "x" not in body:
                raise SyncCheckError("no x")

        assert client.must_sync_until(SyncReq(), has_x) == "s3"

    def test_other_exceptions_propagate(self, client, hs):
        def broken(user_id, body):
            raise KeyError("oops")

        with pytest.raises(KeyError):
            client.must_sync_until(SyncReq(), broken)

    def test_check_returning_false_is_rejected(self, client, hs):
        with pytest.raises(TypeError, match="must return None"):
            client.must_sync_until(SyncReq(), lambda user_id, body: False)
        assert hs.sync_count == 1

    def test_check_returning_true_is_rejected(self, client, hs):
        with pytest.raises(TypeError, match="SyncCheckError"):
            client.must_sync_until(SyncReq(), lambda user_id, body: True)

    def test_missing_next_batch_fails(self, hs):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        c = CSAPI("http://hs.test", client=httpx.Client(transport=transport))
        with pytest.raises(MissingFieldError):
            c.must_sync_until(SyncReq())


class TestSyncUntil:
    KEY = "rooms.join.!room:hs\\.test.timeline.events"

    def test_stops_at_first_passing_element(self, client, hs):
        hs.sync_bodies.append(
            timeline("!room:hs.test", {"event_id": "$a"}, {"event_id": "$b"}, {"event_id": "$c"})
        )
        checked = []

        def check(ev):
            checked.append(ev["event_id"])
            return ev["event_id"] == "$b"

        since = client.sync_until("", "", self.KEY, check)
        assert since == "s1"
        assert checked == ["$a", "$b"]

    def test_skips_responses_without_array(self, client, hs):
        hs.sync_bodies.extend([{}, {"rooms": {"join": {}}}, timeline("!room:hs.test", {"event_id": "$a"})])
        since = client.sync_until("s0", "f1", self.KEY, lambda ev: True)
        assert since == "s3"
        assert since_params(hs) == ["s0", "s1", "s2"]
        assert hs.sync_requests[0].url.params["filter"] == "f1"

    def test_timeout_reports_check_count(self, client, hs):
        client.sync_until_timeout = 0.2
        hs.sync_bodies.append(timeline("!room:hs.test", {"event_id": "$a"}, {"event_id": "$b"}))
        with pytest.raises(SyncTimeoutError, match="Called check function 2 times"):
            client.sync_until("", "", self.KEY, lambda ev: False)

    def test_failing_check_logs_event(self, client, hs, caplog):
        hs.sync_bodies.append(timeline("!room:hs.test", {"event_id": "$bad"}))

        def check(ev):
            raise AssertionError("unexpected event")

        with caplog.at_level(logging.ERROR, logger="csapi.client"):
            with pytest.raises(AssertionError):
                client.sync_until("", "", self.KEY, check)
        assert "SyncUntil: failing event" in caplog.text
        assert "$bad" in caplog.text
