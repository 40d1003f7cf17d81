"""An httpx client which logs every round-trip."""

from __future__ import annotations

import logging
import time

import httpx

from .options import DEFAULT_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

_START_KEY = "csapi.start"


def new_logged_client(
    hs_name: str,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> httpx.Client:
    """Return `client` (or a new one) with request logging hooks installed.

    Each completed request is logged as ``GET hs1/_matrix/client/r0/sync => 200 OK (0.012s)``.
    """
    if client is None:
        client = httpx.Client(timeout=timeout)

    def on_request(request: httpx.Request) -> None:
        request.extensions[_START_KEY] = time.monotonic()

    def on_response(response: httpx.Response) -> None:
        request = response.request
        start = request.extensions.get(_START_KEY)
        elapsed = time.monotonic() - start if start is not None else 0.0
        logger.info(
            "%s %s%s => %s %s (%.3fs)",
            request.method,
            hs_name,
            request.url.path,
            response.status_code,
            response.reason_phrase,
            elapsed,
        )

    hooks = client.event_hooks
    hooks.setdefault("request", []).append(on_request)
    hooks.setdefault("response", []).append(on_response)
    client.event_hooks = hooks
    return client
