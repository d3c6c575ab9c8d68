"""Base64, canonical JSON and entropy helpers shared by the security modules."""

import base64
import binascii
import json
import os
from typing import Any

from ..core.exceptions import SerializationError


def random_bytes(length: int) -> bytes:
    """Return ``length`` bytes from the OS CSPRNG."""
    return os.urandom(length)


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """Strict base64 decode; raises ``ValueError`` on malformed or non-text input."""
    if isinstance(text, str):
        text = text.encode("ascii", errors="strict")
    elif not isinstance(text, (bytes, bytearray)):
        raise ValueError(f"invalid base64: expected text, got {type(text).__name__}")
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64: {e}") from None


def _require_json_model(value: Any) -> None:
    # json.dumps would silently turn these into something that decodes differently
    if isinstance(value, tuple):
        raise SerializationError("Failed to serialize payload: tuples are not supported, use a list")
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError("Failed to serialize payload: object keys must be strings")
            _require_json_model(item)
    elif isinstance(value, list):
        for item in value:
            _require_json_model(item)


def canonical_dumps(data: Any) -> bytes:
    """
    Serialize ``data`` to canonical UTF-8 JSON bytes.

    Keys are sorted and separators are compact so the same logical value
    always produces the same plaintext bytes. Only values that decode back
    equal are accepted: dicts with ``str`` keys, lists, ``str``, ``int``,
    finite ``float``, ``bool`` and ``None``.
    """
    try:
        text = json.dumps(
            data,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to serialize payload: {type(e).__name__}") from None
    # after json.dumps, which has already rejected circular references
    _require_json_model(data)
    return text.encode("utf-8")


def canonical_loads(raw: bytes) -> Any:
    """Parse UTF-8 JSON bytes produced by :func:`canonical_dumps`."""
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        # the error text may quote plaintext, so drop it
        raise SerializationError("Failed to parse decrypted payload") from None
