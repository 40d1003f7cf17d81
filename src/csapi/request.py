"""Request modifiers for `CSAPI.do_func`.

A modifier is a callable which mutates the pending `RequestParts` before the
request is sent:

    client.must_do_func(
        "POST", ["_matrix", "media", "r0", "upload"],
        with_raw_body(data), with_content_type("image/png"),
        with_queries({"filename": "cat.png"}),
    )
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Union

from .errors import MalformedRequestError

QueryParams = Union[Mapping[str, Any], Iterable[tuple[str, Any]]]


@dataclass
class RequestParts:
    """Everything about a request except its method and URL."""

    headers: dict[str, str] = field(default_factory=dict)
    params: list[tuple[str, str]] = field(default_factory=list)
    content: bytes | None = None

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return None

    def set_header(self, name: str, value: str) -> None:
        for key in list(self.headers):
            if key.lower() == name.lower():
                del self.headers[key]
        self.headers[name] = value


RequestOpt = Callable[[RequestParts], None]


def with_raw_body(body: bytes) -> RequestOpt:
    """Set the request body to `body`."""

    def apply(req: RequestParts) -> None:
        req.content = body
        req.set_header("Content-Length", str(len(body)))

    return apply


def with_content_type(content_type: str) -> RequestOpt:
    """Set the Content-Type header."""

    def apply(req: RequestParts) -> None:
        req.set_header("Content-Type", content_type)

    return apply


def with_json_body(obj: Any) -> RequestOpt:
    """Set the request body to the JSON serialised form of `obj`."""

    def apply(req: RequestParts) -> None:
        try:
            data = json.dumps(obj).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise MalformedRequestError(f"failed to marshal JSON body: {e}") from e
        with_raw_body(data)(req)

    return apply


def with_queries(params: QueryParams) -> RequestOpt:
    """Replace the query string.

    Accepts a mapping (list values become repeated keys) or a sequence of
    (key, value) pairs. Do not use this for ``access_token``; set the
    client's access token instead.
    """
    items: list[tuple[str, str]] = []
    pairs = params.items() if isinstance(params, Mapping) else params
    for key, value in pairs:
        if isinstance(value, (list, tuple)):
            items.extend((key, str(v)) for v in value)
        else:
            items.append((key, str(value)))

    def apply(req: RequestParts) -> None:
        req.params = list(items)

    return apply
