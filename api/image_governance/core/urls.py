from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit, urlunsplit

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}
DEFAULT_PORTS = {"http": 80, "https": 443}
UPLOAD_SUBDIRECTORIES = ("analysis", "avatars", "community")

_ABSOLUTE_RE = re.compile(r"^https?://", re.IGNORECASE)
_SUBDIRECTORY_RE = re.compile(rf"^(?:{'|'.join(UPLOAD_SUBDIRECTORIES)})/")
_LEGACY_IMAGES_PREFIX = "/images/"


class RewriteReason(str, Enum):
    NONE = "none"
    INVALID = "invalid"
    PORT_REWRITE = "port_rewrite"
    PROTOCOL_NORMALIZED = "protocol_normalized"
    RELATIVE_TO_ABSOLUTE = "relative_to_absolute"
    UPLOADS_PREFIX_ADDED = "uploads_prefix_added"


@dataclass(slots=True, frozen=True)
class NormalizationOutcome:
    resolved_value: str
    reason_code: RewriteReason
    changed: bool


def normalize(raw: str, default_directory: str, canonical_origin: str) -> NormalizationOutcome:
    """Classify one stored image URL and compute its canonical form.

    Never raises: anything ``urllib.parse`` rejects is reported as ``invalid``
    with the raw value kept as-is.
    """
    if not isinstance(raw, str) or not raw.strip():
        return NormalizationOutcome(resolved_value=raw, reason_code=RewriteReason.NONE, changed=False)

    try:
        resolved, reason = _rewrite(raw.strip(), default_directory, canonical_origin.rstrip("/"))
    except ValueError:
        return NormalizationOutcome(resolved_value=raw, reason_code=RewriteReason.INVALID, changed=False)

    if reason is RewriteReason.NONE:
        resolved = raw
    return NormalizationOutcome(resolved_value=resolved, reason_code=reason, changed=resolved != raw)


def _rewrite(value: str, default_directory: str, origin: str) -> tuple[str, RewriteReason]:
    if _ABSOLUTE_RE.match(value):
        return _rewrite_absolute(value, origin)
    if value.startswith("//"):
        return f"{urlsplit(origin).scheme}:{value}", RewriteReason.PROTOCOL_NORMALIZED
    if value.startswith("/uploads/"):
        return f"{origin}{value}", RewriteReason.RELATIVE_TO_ABSOLUTE
    if value.startswith("uploads/"):
        return f"{origin}/{value}", RewriteReason.RELATIVE_TO_ABSOLUTE
    if _SUBDIRECTORY_RE.match(value):
        return f"{origin}/uploads/{value}", RewriteReason.UPLOADS_PREFIX_ADDED
    if value.startswith(_LEGACY_IMAGES_PREFIX):
        filename = value[len(_LEGACY_IMAGES_PREFIX) :]
        return f"{origin}/uploads/{default_directory}/{filename}", RewriteReason.UPLOADS_PREFIX_ADDED
    if "/" not in value:
        return f"{origin}/uploads/{default_directory}/{value}", RewriteReason.UPLOADS_PREFIX_ADDED
    if value.startswith("/"):
        return f"{origin}{value}", RewriteReason.RELATIVE_TO_ABSOLUTE
    return f"{origin}/{value}", RewriteReason.RELATIVE_TO_ABSOLUTE


def _rewrite_absolute(value: str, origin: str) -> tuple[str, RewriteReason]:
    parsed = urlsplit(value)
    canonical = urlsplit(origin)
    if (parsed.hostname or "") not in LOOPBACK_HOSTS:
        return value, RewriteReason.NONE
    if _port_text(parsed) == _port_text(canonical):
        return value, RewriteReason.NONE

    path = parsed.path or "/"
    rewritten = urlunsplit((canonical.scheme, canonical.netloc, path, parsed.query, parsed.fragment))
    return rewritten, RewriteReason.PORT_REWRITE


def _port_text(parsed) -> str:
    # .port raises ValueError for malformed or out-of-range ports
    port = parsed.port
    if port is None or DEFAULT_PORTS.get(parsed.scheme.lower()) == port:
        return ""
    return str(port)
