"""
JSON codec for records persisted by file-backed stores.

Plain JSON cannot hold datetimes, bytes or decimals. They are written as
tagged objects {"$kv": <tag>, "v": <text>} and restored on decode, so a
record read back compares equal to the record written.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime
from decimal import Decimal
from typing import Any

TAG = "$kv"


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {TAG: "datetime", "v": value.isoformat()}
    if isinstance(value, (bytes, bytearray)):
        return {TAG: "bytes", "v": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, Decimal):
        return {TAG: "decimal", "v": str(value)}
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        tag = value.get(TAG)
        if tag is not None and set(value) == {TAG, "v"}:
            if tag == "datetime":
                return datetime.fromisoformat(value["v"])
            if tag == "bytes":
                return base64.b64decode(value["v"])
            if tag == "decimal":
                return Decimal(value["v"])
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


def dumps(value: Any) -> str:
    """Serialize a record or key to compact, key-sorted JSON."""
    return json.dumps(_encode(value), sort_keys=True, separators=(",", ":"))


def loads(text: str) -> Any:
    return _decode(json.loads(text))
