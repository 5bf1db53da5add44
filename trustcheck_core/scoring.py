"""Heuristic scoring, AI score fusion and status mapping."""

from __future__ import annotations

import math
from typing import Mapping

from .models import AIAnalysis, Status, Verdict

BASELINE_SCORE = 50
WELL_KNOWN_BONUS = 15

LOW_RISK_THRESHOLD = 75
CAUTION_THRESHOLD = 45
HIGH_RISK_STATUS: Status = "High Risk Indicators Detected"

SECURITY_HEADER_BONUS = {
    "strict-transport-security": 3,
    "content-security-policy": 2,
    "x-frame-options": 2,
}


def clamp_score(score: float) -> int:
    # Half-up rounding.
    return max(0, min(100, math.floor(score + 0.5)))


def status_for(score: int) -> Status:
    if score >= LOW_RISK_THRESHOLD:
        return "Low Risk"
    if score >= CAUTION_THRESHOLD:
        return "Proceed with Caution"
    return HIGH_RISK_STATUS


def _weight(verdict: Verdict, good: int, warn: int, bad: int, unknown: int) -> int:
    return {"good": good, "warn": warn, "bad": bad}.get(verdict, unknown)


def heuristic_score(
    *,
    https: Verdict,
    domain_age: Verdict,
    business: Verdict,
    medical: Verdict,
    support: Verdict,
    well_known: bool,
    headers: Mapping[str, str],
) -> int:
    """Calm, explainable rule-based score. Unbounded until fused and clamped."""
    score = BASELINE_SCORE
    score += _weight(https, good=12, warn=-10, bad=-15, unknown=0)
    score += _weight(domain_age, good=15, warn=5, bad=-12, unknown=10 if well_known else 0)
    score += _weight(business, good=12, warn=3, bad=-8, unknown=10 if well_known else 0)
    score += _weight(medical, good=5, warn=-8, bad=-8, unknown=3 if well_known else 0)
    score += _weight(support, good=10, warn=2, bad=-6, unknown=8 if well_known else 0)

    if well_known:
        score += WELL_KNOWN_BONUS

    for name, bonus in SECURITY_HEADER_BONUS.items():
        if headers.get(name):
            score += bonus
    return score


def merge_scores(heuristic: int, ai: AIAnalysis | None) -> int:
    if ai is None:
        return clamp_score(heuristic)

    # AI-led: a high-confidence verdict replaces the heuristic outright.
    if ai.confidence_level == "high":
        return clamp_score(ai.ai_score)

    weight_ai = 0.75 if ai.confidence_level == "medium" else 0.5
    return clamp_score(heuristic * (1 - weight_ai) + ai.ai_score * weight_ai)


def domain_age_verdict(age_days: int | None) -> Verdict:
    if age_days is None:
        return "unknown"
    if age_days >= 365:
        return "good"
    if age_days >= 90:
        return "warn"
    return "bad"


def ai_item_verdict(ai: AIAnalysis) -> Verdict:
    if ai.confidence_level == "high":
        good_at, warn_at = 75, 45
    elif ai.confidence_level == "medium":
        good_at, warn_at = 70, 40
    else:
        return "unknown"
    if ai.ai_score >= good_at:
        return "good"
    if ai.ai_score >= warn_at:
        return "warn"
    return "bad"
