from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit

# "scheme:" prefix, but not "host:port".
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z\d+.-]*:(?!\d)")
DEFAULT_PORTS = {"http": 80, "https": 443}


class InvalidUrl(ValueError):
    """Raised when user input can't be turned into an http(s) website URL."""


def normalize_url(raw: str) -> str:
    value = (raw or "").strip()
    if not value:
        raise InvalidUrl("Please provide a URL.")

    if not _SCHEME_RE.match(value):
        value = "https://" + value

    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError:
        raise InvalidUrl("That URL doesn't look quite right. Please try again.") from None

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        raise InvalidUrl("Please use an http(s) website URL.")

    hostname = (parts.hostname or "").lower()
    if not hostname or "." not in hostname or any(ch.isspace() for ch in hostname):
        raise InvalidUrl("Please enter a valid website domain.")

    netloc = hostname
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{hostname}:{port}"
    userinfo = parts.netloc.rpartition("@")[0] if "@" in parts.netloc else ""
    if userinfo:
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def hostname_of(url: str) -> str | None:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def registrable_domain(hostname: str) -> str:
    """Naive eTLD+1 guess: the last two labels."""
    parts = [p for p in hostname.lower().split(".") if p]
    if len(parts) <= 2:
        return ".".join(parts)
    return ".".join(parts[-2:])
