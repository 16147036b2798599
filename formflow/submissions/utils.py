# formflow/submissions/utils.py

import json
import zlib
from typing import Any, Dict, Tuple

from formflow.utils.logger import get_logger

logger = get_logger(__name__)

COMPRESSION_LEVEL = 6


def encode_payload(data: Dict[str, Any]) -> Tuple[bytes, bool]:
    """
    Serialize submission data to JSON and deflate it.

    Returns the bytes to store and whether they are compressed. When
    compression fails the raw JSON is returned with the flag cleared.
    """
    raw = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
    try:
        return zlib.compress(raw, COMPRESSION_LEVEL), True
    except zlib.error as e:
        logger.warning("Payload compression failed, storing raw JSON", error=str(e))
        return raw, False


def decode_payload(payload: bytes, compressed: bool) -> Dict[str, Any]:
    """Inverse of encode_payload, honoring the stored compression flag"""
    if not payload:
        return {}
    raw = zlib.decompress(payload) if compressed else payload
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)
