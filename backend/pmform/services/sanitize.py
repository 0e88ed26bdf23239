# backend/pmform/services/sanitize.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

log = logging.getLogger("pmform.sanitize")

# -----------------------------------------------------------------------------
# Input sanitization
# -----------------------------------------------------------------------------
# Neutralizes markup/protocols in untrusted text. Never rejects input: schema
# validation downstream decides whether the payload is acceptable.
#
# Suspicious-pattern detection runs on the ORIGINAL values, so warnings
# describe what the client sent, not what survived cleaning.
# -----------------------------------------------------------------------------

_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
)

_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_EVENT_HANDLER_QUOTED = re.compile(r"""on\w+\s*=\s*["'][^"']*["']""", re.IGNORECASE)
_EVENT_HANDLER_BARE = re.compile(r"on\w+\s*=\s*[^\s>]*", re.IGNORECASE)
_JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_DATA_HTML_PROTOCOL = re.compile(r"data:text/html", re.IGNORECASE)

SUSPICIOUS_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
)


def _strip_until_stable(pattern: re.Pattern[str], text: str) -> str:
    # "javajavascript:script:" must not collapse into "javascript:"
    while True:
        out = pattern.sub("", text)
        if out == text:
            return out
        text = out


def sanitize_string(value: Any) -> str:
    if not isinstance(value, str):
        return ""

    out = value.replace("\0", "")
    for raw, encoded in _HTML_ESCAPES:
        out = out.replace(raw, encoded)

    out = _SCRIPT_BLOCK.sub("", out)
    out = _strip_until_stable(_EVENT_HANDLER_QUOTED, out)
    out = _strip_until_stable(_EVENT_HANDLER_BARE, out)
    out = _strip_until_stable(_JS_PROTOCOL, out)
    out = _strip_until_stable(_DATA_HTML_PROTOCOL, out)
    return out.strip()


def sanitize_object(value: Any) -> Any:
    """Apply sanitize_string to every string leaf; other leaves pass through."""
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, dict):
        return {k: sanitize_object(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_object(v) for v in value]
    return value


@dataclass(frozen=True)
class SanitizedPayload:
    sanitized: Any
    warnings: list[str] = field(default_factory=list)
    flagged_paths: list[str] = field(default_factory=list)


def _find_suspicious(value: Any, path: str, out: list[str]) -> None:
    if isinstance(value, str):
        if any(p.search(value) for p in SUSPICIOUS_PATTERNS):
            out.append(path or "unknown")
        return
    if isinstance(value, dict):
        items = value.items()
    elif isinstance(value, (list, tuple)):
        items = enumerate(value)
    else:
        return
    for k, v in items:
        _find_suspicious(v, f"{path}.{k}" if path else str(k), out)


def sanitize_form_data(data: Any) -> SanitizedPayload:
    paths: list[str] = []
    _find_suspicious(data, "", paths)

    sanitized = sanitize_object(data)
    warnings = [f"Suspicious content detected in field: {p}" for p in paths]
    return SanitizedPayload(sanitized=sanitized, warnings=warnings, flagged_paths=paths)


def log_sanitization(field_name: str, original: str, sanitized: str) -> None:
    if original != sanitized:
        log.warning(
            "input_sanitized field=%s original=%r sanitized=%r",
            field_name,
            original[:100],
            sanitized[:100],
        )


# -----------------------------
# Small validators / cleaners
# -----------------------------
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_THAI_PHONE_RE = re.compile(r"^0\d{1,2}-?\d{3}-?\d{4}$")
_HTML_TAG_RE = re.compile(r"<[^>]*>")


def sanitize_filename(filename: Any) -> str:
    if not isinstance(filename, str):
        return ""
    out = filename.replace("..", "")
    out = re.sub(r"[/\\]", "", out)
    out = out.replace("\0", "")
    out = re.sub(r"[^a-zA-Z0-9._-]", "_", out)
    return out[:255].strip()


def strip_html(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return _HTML_TAG_RE.sub("", value).strip()


def escape_regex(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"([.*+?^${}()|\[\]\\])", r"\\\1", value)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def is_valid_thai_phone(phone: str) -> bool:
    return bool(_THAI_PHONE_RE.match(phone or ""))


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def sanitize_machine_number(value: str) -> str | None:
    digits = re.sub(r"\D", "", value or "")[:4]
    return digits if len(digits) == 4 else None
