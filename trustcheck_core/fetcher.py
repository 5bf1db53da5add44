from __future__ import annotations

import logging
import socket
import ssl
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from .models import FetchInfo, TLSInfo

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 TrustCheckBot/2.0"
)

REQUEST_HEADERS = {
    "user-agent": USER_AGENT,
    "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "accept-language": "en-US,en;q=0.5",
}

SECURITY_HEADERS = (
    "server",
    "x-powered-by",
    "strict-transport-security",
    "content-security-policy",
    "x-frame-options",
)

MAX_REDIRECTS = 5
MAX_HTML_BYTES = 500_000


@dataclass
class HomepageFetch:
    final_url: str
    html: str | None = None
    http_status: int | None = None
    content_type: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    redirect_chain: list[str] = field(default_factory=list)
    note: str | None = None

    @property
    def html_available(self) -> bool:
        return bool(self.html)

    def to_fetch_info(self) -> FetchInfo:
        return FetchInfo(
            final_url=self.final_url,
            http_status=self.http_status,
            content_type=self.content_type,
            redirect_chain=list(self.redirect_chain),
            headers=dict(self.headers),
            html_available=self.html_available,
            fetch_note=self.note,
        )


def _read_capped(res: httpx.Response, limit: int) -> str:
    chunks: list[bytes] = []
    size = 0
    for chunk in res.iter_bytes():
        chunks.append(chunk)
        size += len(chunk)
        if size >= limit:
            break
    body = b"".join(chunks)[:limit]
    return body.decode(res.encoding or "utf-8", errors="replace")


def _fetch_with(client: httpx.Client, url: str, timeout_s: float) -> HomepageFetch:
    deadline = time.monotonic() + timeout_s
    redirect_chain: list[str] = []
    headers_out: dict[str, str] = {}
    current = url
    status: int | None = None
    content_type: str | None = None

    for _ in range(MAX_REDIRECTS + 1):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise httpx.TimeoutException("Homepage fetch deadline exceeded.")

        with client.stream(
            "GET", current, headers=REQUEST_HEADERS, timeout=remaining, follow_redirects=False
        ) as res:
            status = res.status_code
            content_type = res.headers.get("content-type")
            for name in SECURITY_HEADERS:
                value = res.headers.get(name)
                if value:
                    headers_out[name] = value

            location = res.headers.get("location")
            if 300 <= status < 400 and location:
                if len(redirect_chain) >= MAX_REDIRECTS:
                    break
                redirect_chain.append(current)
                current = str(httpx.URL(current).join(location))
                continue

            html = None
            if content_type and "text/html" in content_type.lower():
                html = _read_capped(res, MAX_HTML_BYTES)

            note = None
            if status in (403, 429) and not html:
                note = "Site limited automated access (common for large brands)."
            return HomepageFetch(
                final_url=current,
                html=html,
                http_status=status,
                content_type=content_type,
                headers=headers_out,
                redirect_chain=redirect_chain,
                note=note,
            )

    return HomepageFetch(
        final_url=current,
        http_status=status,
        content_type=content_type,
        headers=headers_out,
        redirect_chain=redirect_chain,
        note="Too many redirects.",
    )


def fetch_homepage(url: str, timeout_s: float = 8.0, *, client: httpx.Client | None = None) -> HomepageFetch:
    """GET the homepage, following up to five redirects by hand.

    Never raises: network, DNS and TLS failures come back as a fetch with no
    status and a note.
    """
    try:
        if client is None:
            with httpx.Client(follow_redirects=False) as own_client:
                return _fetch_with(own_client, url, timeout_s)
        return _fetch_with(client, url, timeout_s)
    except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as e:
        logger.debug("Homepage fetch for %s failed: %s", url, e)
        return HomepageFetch(final_url=url, note="Unable to fetch homepage content.")


def _format_name(rdns: tuple) -> str:
    return ", ".join("=".join(x) for rdn in rdns for x in rdn)


def probe_tls(hostname: str, timeout_s: float = 5.0) -> TLSInfo:
    try:
        ctx = ssl.create_default_context()
        with socket.create_connection((hostname, 443), timeout=timeout_s) as sock:
            with ctx.wrap_socket(sock, server_hostname=hostname) as ssock:
                cert = ssock.getpeercert()
    except (OSError, ValueError) as e:
        logger.debug("TLS probe for %s failed: %s", hostname, e)
        return TLSInfo(supported=False)

    if not cert:
        return TLSInfo(supported=True)

    not_after = cert.get("notAfter")
    days_to_expiry = None
    if not_after:
        try:
            expires = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
            days_to_expiry = int((expires - datetime.now(timezone.utc)).total_seconds() // 86400)
        except ValueError:
            days_to_expiry = None

    return TLSInfo(
        supported=True,
        issuer=_format_name(cert.get("issuer", ())) or None,
        subject=_format_name(cert.get("subject", ())) or None,
        not_after=not_after,
        days_to_expiry=days_to_expiry,
    )
