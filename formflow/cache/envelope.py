# formflow/cache/envelope.py

"""
Tagged text envelope for cached values.

The writer picks the tag: ``t:`` plain text, ``j:`` a JSON document,
``b:`` base64 encoded bytes. Readers dispatch on the tag alone and hand
back anything untagged exactly as stored.
"""

import base64
import json
from typing import Any

TEXT_TAG = "t:"
JSON_TAG = "j:"
BYTES_TAG = "b:"


def encode_value(value: Any) -> str:
    """Wrap a value in its tagged text form"""
    if isinstance(value, (bytes, bytearray)):
        return BYTES_TAG + base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, str):
        return TEXT_TAG + value
    return JSON_TAG + json.dumps(value, default=str)


def decode_value(raw: Any) -> Any:
    """Unwrap a tagged value; untagged input is returned untouched"""
    if not isinstance(raw, str):
        return raw
    if raw.startswith(TEXT_TAG):
        return raw[len(TEXT_TAG):]
    if raw.startswith(JSON_TAG):
        return json.loads(raw[len(JSON_TAG):])
    if raw.startswith(BYTES_TAG):
        return base64.b64decode(raw[len(BYTES_TAG):])
    return raw
