# formflow/utils/general.py

import json
import uuid
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Timezone aware current UTC time"""
    return datetime.now(timezone.utc)


def generate_uuid() -> str:
    """Random UUIDv4 as a string"""
    return str(uuid.uuid4())


def elapsed_ms(start: float, end: float) -> float:
    """Milliseconds between two perf_counter readings, rounded to 2 decimals"""
    return round((end - start) * 1000, 2)


def is_scalar(value: Any) -> bool:
    """True for values that can be stored as plain text"""
    return value is None or isinstance(value, (str, int, float, bool))


def to_meta_value(value: Any) -> str:
    """Serialize a meta value; structures become JSON text"""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool) or not is_scalar(value):
        return json.dumps(value, default=str)
    return str(value)
