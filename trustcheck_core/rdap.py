"""Best-effort domain age lookup via public RDAP."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from .urls import registrable_domain

logger = logging.getLogger(__name__)

DEFAULT_RDAP_BASE_URL = "https://rdap.org"


def _parse_event_date(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def registration_age_days(payload: object, now: datetime | None = None) -> int | None:
    """Whole days since the first "registration" event in an RDAP document."""
    if not isinstance(payload, dict):
        return None
    events = payload.get("events") or []
    if not isinstance(events, list):
        return None

    reg_date = None
    for event in events:
        if not isinstance(event, dict):
            continue
        action = str(event.get("eventAction") or "").lower()
        if "registration" in action:
            reg_date = event.get("eventDate")
            break
    if not isinstance(reg_date, str) or not reg_date:
        return None

    created = _parse_event_date(reg_date)
    if created is None:
        return None

    now = now or datetime.now(timezone.utc)
    days = int((now - created).total_seconds() // 86400)
    return days if days >= 0 else None


def fetch_domain_age_days(
    hostname: str,
    timeout_s: float = 5.0,
    *,
    base_url: str = DEFAULT_RDAP_BASE_URL,
    client: httpx.Client | None = None,
) -> int | None:
    domain = registrable_domain(hostname)
    url = f"{base_url.rstrip('/')}/domain/{domain}"
    headers = {"accept": "application/rdap+json, application/json"}

    try:
        if client is None:
            with httpx.Client(timeout=timeout_s, follow_redirects=True) as own_client:
                res = own_client.get(url, headers=headers)
        else:
            res = client.get(url, headers=headers, timeout=timeout_s, follow_redirects=True)
        if not res.is_success:
            logger.debug("RDAP lookup for %s returned %s", domain, res.status_code)
            return None
        payload = res.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.debug("RDAP lookup for %s failed: %s", domain, e)
        return None

    return registration_age_days(payload)
