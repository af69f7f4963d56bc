"""Snapshot key derivation: stable, path-safe identifiers for monitored targets."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urlsplit, urlunsplit

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")
_SLUG_MAX = 48


def normalize_url(url: str) -> str:
    """Canonical spelling of a URL for keying.

    Only the case-insensitive parts change (scheme and host) and an empty
    path becomes ``/``. Path, query order and fragment are kept verbatim, so
    hash-routed pages and trailing-slash variants stay distinct targets.
    """
    parts = urlsplit(url.strip())
    return urlunsplit((
        parts.scheme.lower(),
        parts.netloc.lower(),
        parts.path or "/",
        parts.query,
        parts.fragment,
    ))


def _slug(text: str, limit: int = _SLUG_MAX) -> str:
    slug = _UNSAFE.sub("-", text).strip("-.")
    return slug[:limit] or "x"


def snapshot_key(url: str, viewport_name: str, selector: str) -> str:
    """Derive the storage key for a (url, viewport, selector) triple.

    The readable prefix is lossy; uniqueness comes from the digest of the
    full normalized triple. Keys are never parsed back into their parts.
    """
    normalized = normalize_url(url)
    digest = hashlib.sha256(
        "\x00".join((normalized, viewport_name, selector)).encode("utf-8")
    ).hexdigest()[:16]
    parsed = urlsplit(normalized)
    readable = _slug(f"{parsed.netloc}{parsed.path}")
    return f"{readable}__{_slug(viewport_name, 16)}__{digest}"
