"""Request/response body codecs.

Bodies cross the wire as bytes. This module turns request payloads into bytes
(JSON documents, NDJSON bulk bodies, or already-encoded text/bytes passed
through untouched) and decodes response bytes according to the declared
``content-type``. Anything richer than JSON is the caller's business.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from .errors import DeserializationError, SerializationError

JSON_MIMETYPE = "application/json"
NDJSON_MIMETYPE = "application/x-ndjson"


def _mimetype(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def is_json(content_type: Optional[str]) -> bool:
    mimetype = _mimetype(content_type)
    return mimetype == JSON_MIMETYPE or mimetype.endswith("+json")


def is_ndjson(content_type: Optional[str]) -> bool:
    return _mimetype(content_type) in (NDJSON_MIMETYPE, "application/ndjson")


class Serializer:
    """JSON/NDJSON codec used by the transport."""

    mimetype = JSON_MIMETYPE

    def dumps(self, data: Any) -> bytes:
        """Encode ``data`` as a JSON document.

        ``str`` and ``bytes`` are treated as already serialized.

        Raises:
            SerializationError: If the value cannot be encoded.
        """
        if isinstance(data, bytes):
            return data
        if isinstance(data, str):
            return data.encode("utf-8")
        try:
            return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise SerializationError(str(exc), data=data) from exc

    def ndjson(self, items: Iterable[Any]) -> bytes:
        """Encode a bulk body, one document per line, newline terminated."""
        if isinstance(items, (bytes, str)):
            raw = items.encode("utf-8") if isinstance(items, str) else items
            return raw if raw.endswith(b"\n") else raw + b"\n"
        lines = [self.dumps(item) for item in items]
        return b"".join(line + b"\n" for line in lines)

    def loads(self, data: bytes, content_type: Optional[str] = None) -> Any:
        """Decode ``data`` according to ``content_type``.

        JSON becomes Python objects, NDJSON a list of objects, anything else
        text (utf-8). An empty body decodes to an empty string.

        Raises:
            DeserializationError: If the payload does not match its declared type.
        """
        if not data:
            return ""
        try:
            if is_json(content_type):
                return json.loads(data)
            if is_ndjson(content_type):
                return [json.loads(line) for line in data.splitlines() if line.strip()]
            return data.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise DeserializationError(str(exc), data=data) from exc


__all__ = [
    "JSON_MIMETYPE",
    "NDJSON_MIMETYPE",
    "Serializer",
    "is_json",
    "is_ndjson",
]
