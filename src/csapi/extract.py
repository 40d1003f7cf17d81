"""Pull required fields out of JSON response bodies."""

from __future__ import annotations

import json
from typing import Any

import httpx

from . import jsonpath
from .errors import FieldTypeError, InvalidJSONError, MissingFieldError


def _load(body: Any) -> Any:
    """Parse bytes or str input; anything else is taken as already parsed."""
    if not isinstance(body, (bytes, bytearray, str)):
        return body
    try:
        return json.loads(body)
    except ValueError as e:
        raise InvalidJSONError(f"response is not valid JSON: {e}") from e


def _printable(body: Any) -> str:
    if isinstance(body, (bytes, bytearray)):
        return bytes(body).decode("utf-8", errors="replace")
    if isinstance(body, str):
        return body
    return json.dumps(body)


def _read(response: httpx.Response) -> bytes:
    try:
        return response.read()
    finally:
        response.close()


def parse_json(response: httpx.Response) -> bytes:
    """Read and close a response body, ensuring it is valid JSON."""
    body = _read(response)
    _load(body)
    return body


def load_json(response: httpx.Response) -> Any:
    """Read and close a response body, returning the decoded document."""
    return _load(_read(response))


def get_json_field_str(body: Any, key: str) -> str:
    """Extract a non-empty string at `key`.

    Raises:
        MissingFieldError: The key is absent.
        FieldTypeError: The key is present but not a non-empty string.
    """
    document = _load(body)
    result = jsonpath.lookup(document, key)
    if not result.exists:
        raise MissingFieldError(key, _printable(body))
    if result.string == "":
        raise FieldTypeError(key, _printable(body))
    return result.string


def get_json_field_string_array(body: Any, key: str) -> list[str]:
    """Extract the array at `key` as strings.

    Elements which are not strings become empty strings. A scalar value is
    treated as a one element array.
    """
    document = _load(body)
    result = jsonpath.lookup(document, key)
    if not result.exists:
        raise MissingFieldError(key, _printable(body))

    values = result.value if isinstance(result.value, list) else [result.value]
    return [v if isinstance(v, str) else "" for v in values]
