"""Keyword heuristics over homepage HTML.

These are intentionally plain substring checks: users see the resulting
explainability items, so the term lists below are part of the contract and
must not be stemmed, fuzzed or reordered.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .models import ExplainabilityItem, Verdict
from .urls import registrable_domain

WELL_KNOWN_DOMAINS = frozenset({
    "google.com", "youtube.com", "facebook.com", "amazon.com", "apple.com",
    "microsoft.com", "netflix.com", "linkedin.com", "twitter.com", "x.com",
    "instagram.com", "reddit.com", "wikipedia.org", "github.com", "stackoverflow.com",
    "ebay.com", "walmart.com", "target.com", "bestbuy.com", "costco.com",
    "paypal.com", "stripe.com", "shopify.com", "etsy.com", "zoom.us",
    "slack.com", "dropbox.com", "adobe.com", "salesforce.com", "oracle.com",
    "ibm.com", "intel.com", "nvidia.com", "amd.com", "dell.com", "hp.com",
    "spotify.com", "twitch.tv", "discord.com", "tiktok.com", "snapchat.com",
    "pinterest.com", "tumblr.com", "quora.com", "medium.com", "substack.com",
    "nytimes.com", "washingtonpost.com", "bbc.com", "cnn.com", "reuters.com",
    "bloomberg.com", "wsj.com", "forbes.com", "theguardian.com", "npr.org",
    "chase.com", "bankofamerica.com", "wellsfargo.com", "citi.com", "capitalone.com",
    "amex.com", "visa.com", "mastercard.com", "fidelity.com", "schwab.com",
    "vanguard.com", "robinhood.com", "coinbase.com", "binance.com", "kraken.com",
})

BUSINESS_TERMS = (
    "about",
    "contact",
    "company",
    "who we are",
    "privacy",
    "terms",
    "refund",
    "returns",
    "shipping",
    "support",
)

MEDICAL_TERMS = (
    "cure",
    "treat",
    "diagnose",
    "remedy",
    "miracle",
    "fda",
    "clinical",
    "disease",
    "weight loss",
    "supplement",
)

SUPPORT_TERMS = ("support", "help", "contact", "returns", "refund", "shipping", "email", "phone")

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)


def is_well_known(hostname: str) -> bool:
    return registrable_domain(hostname) in WELL_KNOWN_DOMAINS


def strip_scripts_styles(html: str) -> str:
    return _STYLE_RE.sub(" ", _SCRIPT_RE.sub(" ", html))


def count_terms(text: str, terms: tuple[str, ...]) -> int:
    hay = text.lower()
    return sum(1 for term in terms if term in hay)


def has_any_term(text: str, terms: tuple[str, ...]) -> bool:
    return count_terms(text, terms) > 0


@dataclass
class HeuristicSignals:
    business: Verdict
    medical: Verdict
    support: Verdict
    well_known: bool
    items: list[ExplainabilityItem] = field(default_factory=list)


def _business_item(text: str | None) -> ExplainabilityItem:
    if text is None:
        return ExplainabilityItem(
            key="businessInfo", label="Business information", verdict="unknown",
            detail="Homepage content wasn't available to check for business details.",
        )
    count = count_terms(text, BUSINESS_TERMS)
    if count >= 3:
        verdict: Verdict = "good"
        detail = "Found multiple common business/support signals (e.g., contact, policies)."
    elif count >= 1:
        verdict = "warn"
        detail = "Found limited business/support info on the homepage."
    else:
        verdict = "bad"
        detail = "Didn't find common business/support markers on the homepage."
    return ExplainabilityItem(key="businessInfo", label="Business information", verdict=verdict, detail=detail)


def _medical_item(text: str | None) -> ExplainabilityItem:
    if text is None:
        return ExplainabilityItem(
            key="medicalClaims", label="Medical claims detected", verdict="unknown",
            detail="Homepage content wasn't available to check for claims.",
        )
    if has_any_term(text, MEDICAL_TERMS):
        return ExplainabilityItem(
            key="medicalClaims", label="Medical claims detected", verdict="warn",
            detail="Detected health/medical-related phrasing; consider extra caution and verification.",
        )
    return ExplainabilityItem(
        key="medicalClaims", label="Medical claims detected", verdict="good",
        detail="No obvious health/medical-claim phrasing detected on the homepage.",
    )


def _support_item(text: str | None) -> ExplainabilityItem:
    if text is None:
        return ExplainabilityItem(
            key="customerSupport", label="Customer support signals", verdict="unknown",
            detail="Homepage content wasn't available to check for support signals.",
        )
    if has_any_term(text, SUPPORT_TERMS):
        return ExplainabilityItem(
            key="customerSupport", label="Customer support signals", verdict="good",
            detail="Found customer support cues (support/contact/policies).",
        )
    return ExplainabilityItem(
        key="customerSupport", label="Customer support signals", verdict="warn",
        detail="Didn't find obvious customer support cues on the homepage.",
    )


def extract_signals(html: str | None, hostname: str) -> HeuristicSignals:
    text = strip_scripts_styles(html) if html else None

    business = _business_item(text)
    medical = _medical_item(text)
    support = _support_item(text)
    items = [business, medical, support]

    well_known = is_well_known(hostname)
    if well_known:
        items.append(ExplainabilityItem(
            key="establishedBrand", label="Established brand", verdict="good",
            detail="This is a widely recognized, established website with global presence.",
        ))

    return HeuristicSignals(
        business=business.verdict,
        medical=medical.verdict,
        support=support.verdict,
        well_known=well_known,
        items=items,
    )
