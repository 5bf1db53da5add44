from __future__ import annotations

import logging
import re

import httpx

from .fetcher import USER_AGENT

logger = logging.getLogger(__name__)

TRUSTPILOT_URL = "https://www.trustpilot.com/review/{hostname}"

_SCORE_RE = re.compile(r"TrustScore\s*(\d+\.?\d*)", re.IGNORECASE)
_REVIEWS_RE = re.compile(r"(\d+(?:,\d+)*)\s*reviews?", re.IGNORECASE)
_RATING_RE = re.compile(r'"ratingValue"\s*:\s*"?(\d+\.?\d*)"?')


def summarize_trustpilot(html: str) -> str:
    html = html[:30000]
    rating = _RATING_RE.search(html)
    score = _SCORE_RE.search(html)
    reviews = _REVIEWS_RE.search(html)
    if not (rating or score or reviews):
        return "Trustpilot: No rating found (may be new or unlisted)"

    parts: list[str] = []
    if rating:
        parts.append(f"Rating {rating.group(1)}/5")
    if score:
        parts.append(f"TrustScore {score.group(1)}")
    if reviews:
        parts.append(f"{reviews.group(1)} reviews")
    return "Trustpilot: " + ", ".join(parts)


def fetch_external_reviews(hostname: str, timeout_s: float = 5.0, *, client: httpx.Client | None = None) -> str:
    """One-line review summary from sources that tolerate automated lookups.

    Sites behind human verification (ScamAdviser and friends) are skipped on
    purpose; scraping them yields noise.
    """
    url = TRUSTPILOT_URL.format(hostname=hostname)
    headers = {"user-agent": USER_AGENT, "accept": "text/html"}
    try:
        if client is None:
            with httpx.Client(timeout=timeout_s, follow_redirects=True) as own_client:
                res = own_client.get(url, headers=headers)
        else:
            res = client.get(url, headers=headers, timeout=timeout_s, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.debug("Trustpilot lookup for %s failed: %s", hostname, e)
        return "Trustpilot: Unavailable (blocked or network error)"

    if res.status_code == 200:
        return summarize_trustpilot(res.text)
    if res.status_code == 404:
        return "Trustpilot: Not listed (no reviews)"
    return "External reviews unavailable (many sources block automated checks)"
