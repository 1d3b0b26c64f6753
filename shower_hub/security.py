"""Input sanitization for guest-submitted fields.

Every function here is pure and fail-soft: bad input yields an empty string
rather than an exception. Tag delimiters are stripped, not escaped.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, NamedTuple, Optional
from urllib.parse import urlparse

TEXT_MAX_LEN = 1000
NAME_MAX_LEN = 100
EMAIL_MAX_LEN = 254
URL_MAX_LEN = 2048

SCRIPT_BLOCK_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]+>")
DANGEROUS_RES = [
    re.compile(r"[<>]"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:\s*text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"livescript:", re.IGNORECASE),
]
NAME_DISALLOWED_RE = re.compile(r"[^\w\s'-]|[\d_]")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _strip_dangerous(text: str, strip_html: bool) -> str:
    # Removing one pattern can splice together another, so run to a fixed point.
    while True:
        before = text
        if strip_html:
            text = SCRIPT_BLOCK_RE.sub("", text)
            text = TAG_RE.sub("", text)
        for pattern in DANGEROUS_RES:
            text = pattern.sub("", text)
        if text == before:
            return text


def sanitize_text(
    value: Any,
    *,
    max_length: int = TEXT_MAX_LEN,
    allow_newlines: bool = True,
    strip_html: bool = True,
) -> str:
    if not isinstance(value, str):
        return ""
    cleaned = _strip_dangerous(value, strip_html)
    if not allow_newlines:
        cleaned = re.sub(r"[\r\n]", " ", cleaned)
    cleaned = cleaned.strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length].strip()
    return cleaned


def sanitize_name(value: Any, max_length: int = NAME_MAX_LEN) -> str:
    if not isinstance(value, str):
        return ""
    cleaned = NAME_DISALLOWED_RE.sub("", value)
    cleaned = " ".join(cleaned.split())
    return cleaned[:max_length].strip()


def sanitize_email(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    cleaned = value.strip().lower()
    if not EMAIL_RE.match(cleaned):
        return ""
    if len(cleaned) > EMAIL_MAX_LEN or ".." in cleaned:
        return ""
    if "<" in cleaned or ">" in cleaned:
        return ""
    return cleaned


def sanitize_url(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    cleaned = value.strip()
    if not cleaned or len(cleaned) > URL_MAX_LEN:
        return ""
    if "<" in cleaned or ">" in cleaned or any(ch.isspace() for ch in cleaned):
        return ""
    try:
        parsed = urlparse(cleaned)
    except ValueError:
        return ""
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ""
    return cleaned


class FormResult(NamedTuple):
    data: Dict[str, Any]
    errors: List[str]
    is_valid: bool


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _coerce_number(value: Any, integer: bool) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    if integer:
        return int(number)
    return number


def _check_field(field: str, raw: Any, rule: Dict[str, Any], errors: List[str]) -> Any:
    label = rule.get("label", field)
    kind = rule.get("type", "text")

    if kind in ("number", "integer"):
        number = _coerce_number(raw, kind == "integer")
        if number is None:
            errors.append(f"{label} must be a number")
            return None
        if rule.get("min") is not None and number < rule["min"]:
            errors.append(f"{label} must be at least {rule['min']}")
            return None
        if rule.get("max") is not None and number > rule["max"]:
            errors.append(f"{label} must be at most {rule['max']}")
            return None
        return number

    if kind == "name":
        value = sanitize_name(raw, rule.get("max_length", NAME_MAX_LEN))
    elif kind == "email":
        value = sanitize_email(raw)
    elif kind == "url":
        value = sanitize_url(raw)
    else:
        value = sanitize_text(
            raw,
            max_length=rule.get("max_length", TEXT_MAX_LEN),
            allow_newlines=rule.get("allow_newlines", True),
            strip_html=rule.get("strip_html", True),
        )

    if not value:
        errors.append(f"{label} is invalid")
        return None
    if rule.get("min_length") and len(value) < rule["min_length"]:
        errors.append(f"{label} must be at least {rule['min_length']} characters")
        return None
    pattern = rule.get("pattern")
    if pattern and not re.fullmatch(pattern, value):
        errors.append(f"{label} format is invalid")
        return None
    choices = rule.get("enum")
    if choices and value not in choices:
        errors.append(f"{label} must be one of: {', '.join(choices)}")
        return None
    return value


def sanitize_form_data(data: Any, schema: Dict[str, Dict[str, Any]]) -> FormResult:
    """Apply a per-field schema to a submitted form.

    Rules understood per field: ``type`` (text, name, email, url, number,
    integer), ``required``, ``label``, ``min_length``, ``max_length``,
    ``pattern``, ``enum``, ``min``, ``max``, ``default``, ``allow_newlines``.
    Oversized text is truncated rather than rejected.
    """
    source = data if isinstance(data, dict) else {}
    cleaned: Dict[str, Any] = {}
    errors: List[str] = []
    for field, rule in schema.items():
        raw = source.get(field)
        if _is_blank(raw):
            if rule.get("required"):
                errors.append(f"{rule.get('label', field)} is required")
            else:
                cleaned[field] = rule.get("default", "")
            continue
        value = _check_field(field, raw, rule, errors)
        if value is not None:
            cleaned[field] = value
    return FormResult(data=cleaned, errors=errors, is_valid=not errors)
