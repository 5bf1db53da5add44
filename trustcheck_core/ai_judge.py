"""
AI legitimacy judge using Google Gemini.
Packages collected evidence into a prompt and validates the structured verdict.
"""
from __future__ import annotations

import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import ValidationError

from .models import AIAnalysis

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
HTML_PROMPT_LIMIT = 15_000
LIMITED_EVIDENCE_SCORE_CAP = 65

# Abandoned calls keep their worker until the SDK's own timeout fires.
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="ai-judge")


@dataclass
class WebsiteEvidence:
    url: str
    hostname: str
    protocol: str
    html: str | None
    domain_age_days: int | None
    is_well_known: bool
    http_status: int | None = None
    content_type: str | None = None
    redirect_chain: list[str] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    pages_crawled: int | None = None
    external_reviews: str | None = None

    @property
    def limited(self) -> bool:
        return not self.is_well_known and (not self.html or self.domain_age_days is None)


ANALYSIS_PROMPT = """You are TrustCheck AI, an expert website trust and safety analyst. Your job is to assess website trust indicators based ONLY on the provided signals.

IMPORTANT GUIDELINES:
- Be calm, factual, and non-accusatory
- NEVER use words like "scam", "fraud", "fake", or "exposed"
- Use neutral language like "indicators suggest caution" or "limited information available"
- Focus on observable facts, not assumptions
- Acknowledge when data is insufficient
- Well-known established brands (Amazon, Google, Microsoft, etc.) should be treated favorably even if content couldn't be fetched (they often block bots)

SCORING RULES (be conservative for unknown sites):
- If Is Well-Known Brand is "No" AND (HTML is unavailable OR Domain Age is unknown), confidenceLevel MUST be "low" or "medium".
- If Is Well-Known Brand is "No" AND HTML is unavailable, prefer aiScore in the 45-60 range (caution), not 75+.
- Very new domains (< 180 days) should generally score <= 55 unless there are strong, explicit trust signals.
- If the content looks like a generic template storefront, unrealistic promises, heavy urgency cues, or missing contact/business details, aiScore should be below 45.
- Do not claim wrongdoing; describe observable risk indicators.

Analyze the following website data and provide a JSON response:

WEBSITE DATA:
URL: {url}
Hostname: {hostname}
Protocol: {protocol}
Domain Age: {domain_age}
Is Well-Known Brand: {is_well_known}
HTTP Status: {http_status}
Content Type: {content_type}
Redirect Chain: {redirect_chain}
Headers: {headers}
Pages Crawled (internal links): {pages_crawled}

EXTERNAL REVIEWS:
{external_reviews}

HTML CONTENT (truncated if long):
{html}

Respond ONLY with valid JSON in this exact format:
{{
  "overallAssessment": "Brief 1-2 sentence assessment of the website's trustworthiness",
  "trustSignals": {{
    "positive": ["Array of positive trust indicators found"],
    "negative": ["Array of concerning indicators found (use neutral language)"],
    "neutral": ["Array of neutral observations"]
  }},
  "riskFactors": ["Specific risk factors to be aware of, if any"],
  "recommendations": ["Actionable recommendations for the user"],
  "confidenceLevel": "high/medium/low based on data quality",
  "category": "e-commerce/news/social/corporate/personal/unknown",
  "summary": "A single clear sentence summarizing the trust level",
  "aiScore": 0-100 representing suggested trust score (75+ is low risk, 45-74 is caution, below 45 is high risk)
}}"""


def build_prompt(evidence: WebsiteEvidence) -> str:
    return ANALYSIS_PROMPT.format(
        url=evidence.url,
        hostname=evidence.hostname,
        protocol=evidence.protocol,
        domain_age=f"{evidence.domain_age_days} days" if evidence.domain_age_days is not None else "Unknown",
        is_well_known="Yes" if evidence.is_well_known else "No",
        http_status=evidence.http_status if evidence.http_status is not None else "Unknown",
        content_type=evidence.content_type or "Unknown",
        redirect_chain=" -> ".join(evidence.redirect_chain) if evidence.redirect_chain else "None",
        headers=json.dumps(evidence.headers, indent=2),
        pages_crawled=evidence.pages_crawled if evidence.pages_crawled is not None else "Unknown",
        external_reviews=evidence.external_reviews or "Not checked",
        html=(evidence.html or "")[:HTML_PROMPT_LIMIT]
        or "Content not available (site may block automated access)",
    )


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_ai_response(text: str | None) -> AIAnalysis | None:
    """Single validation boundary for model output.

    Anything that isn't the documented shape is rejected as a whole; callers
    treat ``None`` as "AI unavailable".
    """
    if not text or not text.strip():
        return None
    try:
        raw = json.loads(strip_code_fences(text))
    except ValueError:
        logger.warning("AI response was not valid JSON")
        return None

    if not isinstance(raw, dict):
        return None
    signals = raw.get("trustSignals")
    if (
        not isinstance(raw.get("overallAssessment"), str)
        or not _is_number(raw.get("aiScore"))
        or not isinstance(signals, dict)
        or not isinstance(signals.get("positive"), list)
    ):
        logger.warning("Invalid AI response structure")
        return None

    data = dict(raw)
    data["aiScore"] = max(0, min(100, math.floor(float(raw["aiScore"]) + 0.5)))
    confidence = data.get("confidenceLevel")
    if isinstance(confidence, str):
        data["confidenceLevel"] = confidence.strip().lower()

    try:
        return AIAnalysis.model_validate(data)
    except ValidationError as e:
        logger.warning("AI response failed validation: %s", e.error_count())
        return None


def apply_guardrails(analysis: AIAnalysis, evidence: WebsiteEvidence) -> AIAnalysis:
    """Under-evidenced, unrecognized sites can't score into Low Risk on AI say-so."""
    if not evidence.limited:
        return analysis
    update: dict[str, Any] = {"ai_score": min(analysis.ai_score, LIMITED_EVIDENCE_SCORE_CAP)}
    if analysis.confidence_level == "high":
        update["confidence_level"] = "medium"
    return analysis.model_copy(update=update)


class GeminiJudge:
    def __init__(self, api_key: str | None, model: str = DEFAULT_MODEL):
        self.api_key = api_key
        self.model = model
        if not api_key:
            logger.info("GEMINI_API_KEY not set, AI analysis disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _generate(self, prompt: str, timeout_s: float) -> str | None:
        client = genai.Client(
            api_key=self.api_key,
            http_options=types.HttpOptions(timeout=int(timeout_s * 1000)),
        )
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            temperature=0.3,
            max_output_tokens=2048,
        )
        resp = client.models.generate_content(model=self.model, contents=prompt, config=config)
        return (getattr(resp, "text", None) or "").strip() or None

    def judge(self, evidence: WebsiteEvidence, timeout_s: float) -> AIAnalysis | None:
        if not self.enabled or timeout_s <= 0:
            return None

        prompt = build_prompt(evidence)
        future = _executor.submit(self._generate, prompt, timeout_s)
        try:
            text = future.result(timeout=timeout_s)
        except FutureTimeout:
            future.cancel()
            logger.warning("AI analysis for %s abandoned after %.1fs", evidence.hostname, timeout_s)
            return None
        except (genai_errors.APIError, httpx.HTTPError, OSError, ValueError) as e:
            logger.warning("AI analysis for %s failed: %s", evidence.hostname, e)
            return None
        except Exception:
            # Any SDK failure degrades to heuristic-only scoring.
            logger.warning("AI analysis for %s failed unexpectedly", evidence.hostname, exc_info=True)
            return None

        analysis = parse_ai_response(text)
        if analysis is None:
            return None
        return apply_guardrails(analysis, evidence)
