"""Error types raised by the harness.

Every failure is surfaced synchronously to the calling test; nothing here
is retried. Tests that expect a failure (for example a specific Matrix
error code) catch the concrete subclass.
"""

from __future__ import annotations


class CSAPIError(Exception):
    """Base class for all harness errors."""

    pass


class HarnessConfigError(CSAPIError):
    """Raised when harness options or the config file are invalid."""

    pass


class TransportError(CSAPIError):
    """The HTTP request could not be made (connection, DNS, timeout)."""

    def __init__(self, method: str, url: str, cause: Exception):
        self.method = method
        self.url = url
        self.cause = cause
        super().__init__(f"{method} {url} failed: {cause}")


class ProtocolError(CSAPIError):
    """A request which had to succeed returned a non-2xx status."""

    def __init__(
        self,
        method: str,
        url: str,
        status_code: int,
        body: str,
        errcode: str | None = None,
        error: str | None = None,
    ):
        self.method = method
        self.url = url
        self.status_code = status_code
        self.body = body
        self.errcode = errcode
        self.error = error
        super().__init__(f"{method} {url} returned HTTP {status_code} - body: {body}")


class MalformedRequestError(CSAPIError):
    """A request body could not be serialised."""

    pass


class MalformedResponseError(CSAPIError):
    """A response body could not be interpreted."""

    pass


class InvalidJSONError(MalformedResponseError):
    pass


class MissingFieldError(MalformedResponseError):
    def __init__(self, key: str, body: str):
        self.key = key
        super().__init__(f"key '{key}' missing from {body}")


class FieldTypeError(MalformedResponseError):
    def __init__(self, key: str, body: str):
        self.key = key
        super().__init__(f"key '{key}' is not a string, body: {body}")


class SyncCheckError(CSAPIError):
    """A sync check did not find what it was looking for in a response."""

    pass


class SyncTimeoutError(CSAPIError):
    """Sync checks were still pending when the wait budget ran out."""

    pass
