# formflow/utils/sanitize.py

"""
Input sanitization for user supplied form data.
"""

import re
from typing import Any

from pydantic import AnyHttpUrl, EmailStr, TypeAdapter, ValidationError

_email_adapter = TypeAdapter(EmailStr)
_url_adapter = TypeAdapter(AnyHttpUrl)

_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")
_KEY_RE = re.compile(r"[^a-z0-9_\-]")
_EMAIL_RE = re.compile(r"[^A-Za-z0-9.!#$%&'*+/=?^_`{|}~@\-]")
_URL_UNSAFE_RE = re.compile(r"[\s<>\"'`{}|\\^]")


def sanitize_key(key: Any) -> str:
    """Lowercase alphanumerics, dashes and underscores only"""
    return _KEY_RE.sub("", str(key).lower())


def sanitize_text(value: Any) -> str:
    """Strip markup, collapse whitespace and control characters, trim"""
    text = "" if value is None else str(value)
    text = _SCRIPT_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def sanitize_email(value: str) -> str:
    """Drop characters that cannot appear in an address"""
    return _EMAIL_RE.sub("", value.strip())


def sanitize_url(value: str) -> str:
    """Drop whitespace and characters unsafe in a URL"""
    return _URL_UNSAFE_RE.sub("", value.strip())


def is_email(value: Any) -> bool:
    if not isinstance(value, str) or "@" not in value:
        return False
    try:
        _email_adapter.validate_python(value.strip())
        return True
    except ValidationError:
        return False


def is_url(value: Any) -> bool:
    if not isinstance(value, str) or "://" not in value:
        return False
    try:
        _url_adapter.validate_python(value.strip())
        return True
    except ValidationError:
        return False


def sanitize_value(value: Any) -> Any:
    """
    Sanitize one submitted value according to what it looks like.

    Lists and objects are sanitized element by element as text, emails
    and http(s) URLs get their own cleaning, everything else is treated
    as text. Numbers and booleans come back as strings.
    """
    if isinstance(value, dict):
        return {sanitize_key(str(key)): sanitize_text(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_text(item) for item in value]
    if is_email(value):
        return sanitize_email(value)
    if is_url(value):
        return sanitize_url(value)
    return sanitize_text(value)
