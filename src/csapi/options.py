"""Options for the CSAPI client and its /sync requests.

`HarnessOptions` configures how clients reach the homeserver under test and
supports environment variable overrides for CI. `SyncReq` holds the query
options of a single /sync request.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import Any

from .errors import HarnessConfigError

DEFAULT_SYNC_TIMEOUT_MS = 1000
DEFAULT_SYNC_UNTIL_TIMEOUT = 5.0
DEFAULT_REQUEST_TIMEOUT = 30.0


class Presence(str, enum.Enum):
    """Values for the ``set_presence`` query parameter."""

    ONLINE = "online"
    OFFLINE = "offline"
    UNAVAILABLE = "unavailable"


@dataclass
class SyncReq:
    """All the /sync request configuration options.

    ``SyncReq()`` is valid and performs an initial sync, since it has no
    since token.
    """

    since: str = ""
    """A point in time to continue a sync from: the ``next_batch`` of an earlier sync."""

    filter: str = ""
    """A filter ID, or a filter JSON object encoded as a string."""

    full_state: bool = False
    """Return all state events even if since is set. The server will ignore
    the timeout and respond immediately, possibly with an empty timeline."""

    set_presence: Presence | None = None
    """Whether polling marks the user online. Omitted when None."""

    timeout_millis: str | int | None = None
    """How long the server may hold the request open. Defaults to 1000."""

    def to_query(self) -> list[tuple[str, str]]:
        """Build the /sync query parameters."""
        timeout = DEFAULT_SYNC_TIMEOUT_MS if self.timeout_millis in (None, "") else self.timeout_millis
        query = [("timeout", str(timeout))]
        if self.since:
            query.append(("since", self.since))
        if self.filter:
            query.append(("filter", self.filter))
        if self.full_state:
            query.append(("full_state", "true"))
        if self.set_presence is not None:
            query.append(("set_presence", Presence(self.set_presence).value))
        return query


@dataclass
class HarnessOptions:
    """How harness clients connect to the homeserver under test.

    Environment Variables:
        CSAPI_BASE_URL: Homeserver base URL
        CSAPI_HS_NAME: Name used in request logs (defaults to the URL host)
        CSAPI_SYNC_TIMEOUT: Seconds to wait in must_sync_until / sync_until
        CSAPI_DEBUG: "1" / "true" to log request and response bodies

    Examples:
        options = HarnessOptions(base_url="http://localhost:8008")
        options = HarnessOptions()  # everything from the environment
    """

    base_url: str | None = None
    """Homeserver base URL, e.g. http://localhost:8008."""

    hs_name: str | None = None
    """Short homeserver name for logs."""

    sync_until_timeout: float | None = None
    """Overall wait budget in seconds for sync loops."""

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    """Per-request HTTP timeout in seconds. Must exceed the long-poll timeout."""

    debug: bool | None = None
    """Log request and response bodies."""

    _resolved_url: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self._apply_env_overrides()
        self._validate()
        if self.base_url is not None:
            self._resolved_url = self.base_url.rstrip("/")

    def _apply_env_overrides(self) -> None:
        """Fill unset options from the environment. Explicit values win."""
        if self.base_url is None:
            self.base_url = os.environ.get("CSAPI_BASE_URL") or None

        if self.hs_name is None:
            self.hs_name = os.environ.get("CSAPI_HS_NAME") or None

        if self.sync_until_timeout is None:
            env_timeout = os.environ.get("CSAPI_SYNC_TIMEOUT")
            if env_timeout:
                try:
                    self.sync_until_timeout = float(env_timeout)
                except ValueError:
                    raise HarnessConfigError(
                        f"CSAPI_SYNC_TIMEOUT must be a number of seconds, got {env_timeout!r}"
                    ) from None
            else:
                self.sync_until_timeout = DEFAULT_SYNC_UNTIL_TIMEOUT

        if self.debug is None:
            self.debug = os.environ.get("CSAPI_DEBUG", "").lower() in ("1", "true", "yes")

    def _validate(self) -> None:
        if self.base_url is not None and not self.base_url.startswith(("http://", "https://")):
            raise HarnessConfigError(f"base_url must be an http(s) URL, got {self.base_url!r}")

        assert self.sync_until_timeout is not None
        if self.sync_until_timeout <= 0:
            raise HarnessConfigError("sync_until_timeout must be positive")

        if self.request_timeout <= DEFAULT_SYNC_TIMEOUT_MS / 1000:
            raise HarnessConfigError(
                "request_timeout must be longer than the default /sync long-poll timeout"
            )

    @property
    def resolved_url(self) -> str | None:
        """The base URL without a trailing slash."""
        return self._resolved_url

    @property
    def log_name(self) -> str:
        """Name used for this homeserver in request logs."""
        if self.hs_name:
            return self.hs_name
        if self._resolved_url:
            return self._resolved_url.split("://", 1)[-1]
        return "hs"

    def is_configured(self) -> bool:
        """True if a homeserver URL is known."""
        return self._resolved_url is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (for debugging/logging)."""
        return {
            "base_url": self._resolved_url,
            "hs_name": self.log_name,
            "sync_until_timeout": self.sync_until_timeout,
            "request_timeout": self.request_timeout,
            "debug": self.debug,
        }
