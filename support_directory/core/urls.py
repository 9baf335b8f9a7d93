from __future__ import annotations

import re
from urllib.parse import urljoin, urlparse

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
ICON_EXTENSIONS = (".ico",)


def normalize_donate_url(raw_url: str | None) -> str | None:
    """Lower-case an http(s) scheme and reject anything that is not http(s).

    Community documents often carry capitalised schemes (``Http://``) or free
    text in the link column. Only the scheme is touched; host and path keep
    their original case so the value stays a stable identity key.
    """
    if not isinstance(raw_url, str):
        return None
    stripped = raw_url.strip()
    if not stripped:
        return None

    normalized = _SCHEME_RE.sub(lambda match: match.group(0).lower(), stripped, count=1)
    if normalized.startswith("http://") or normalized.startswith("https://"):
        return normalized
    return None


def is_icon_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(ICON_EXTENSIONS)


def absolute_http_url(base_url: str, candidate: str | None) -> str | None:
    if not candidate:
        return None
    stripped = candidate.strip()
    if not stripped or stripped.startswith("data:"):
        return None
    resolved = urljoin(base_url, stripped)
    if urlparse(resolved).scheme.lower() not in {"http", "https"}:
        return None
    return resolved
