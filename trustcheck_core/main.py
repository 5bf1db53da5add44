from __future__ import annotations

import logging
from functools import partial

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .agent_client import AgentClient
from .ai_judge import GeminiJudge
from .analyzer import TrustAnalyzer
from .cache import AnalysisCache, RedisCacheBackend
from .config import Settings
from .flagged import DEFAULT_LIMIT, FlaggedSitesAggregator, RedisFlaggedStore
from .models import AnalysisResult, AnalyzeRequest, FlaggedSitesPage
from .ratelimit import RateLimiter, RateLimitResult, client_ip, rate_limit_headers
from .rdap import fetch_domain_age_days
from .service import AnalysisService
from .storage import connect_redis
from .urls import InvalidUrl

logger = logging.getLogger(__name__)


class RateLimited(Exception):
    def __init__(self, result: RateLimitResult):
        super().__init__("rate limited")
        self.result = result


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_service(settings: Settings) -> AnalysisService:
    redis_client = connect_redis(settings.redis_url)
    cache = AnalysisCache(
        RedisCacheBackend(redis_client) if redis_client is not None else None,
        ttl_seconds=settings.cache_ttl_seconds,
    )
    flagged = FlaggedSitesAggregator(RedisFlaggedStore(redis_client) if redis_client is not None else None)
    analyzer = TrustAnalyzer(
        GeminiJudge(settings.gemini_api_key, settings.gemini_model),
        domain_age=partial(fetch_domain_age_days, base_url=settings.rdap_base_url),
    )
    agent = AgentClient(settings.agent_url) if settings.agent_url else None
    return AnalysisService(analyzer, cache, flagged, agent=agent, settings=settings)


def create_app(
    settings: Settings | None = None,
    *,
    service: AnalysisService | None = None,
    limiter: RateLimiter | None = None,
) -> FastAPI:
    if settings is None:
        settings = Settings.from_env()
    configure_logging(settings.log_level)
    # RateLimiter defines __len__; an empty one is falsy.
    if service is None:
        service = build_service(settings)
    if limiter is None:
        limiter = RateLimiter()

    app = FastAPI(title="TrustCheck Core", version=__version__)
    app.state.settings = settings
    app.state.service = service
    app.state.limiter = limiter

    # Defaults to http://localhost:3000; set TRUSTCHECK_CORS_ORIGINS for deployed frontends.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidUrl)
    def invalid_url_handler(request: Request, exc: InvalidUrl):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    def validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request body.") if errors else "Invalid request body."
        return JSONResponse(status_code=422, content={"error": f"Invalid request body: {detail}"})

    @app.exception_handler(RateLimited)
    def rate_limited_handler(request: Request, exc: RateLimited):
        return JSONResponse(
            status_code=429,
            content={"error": "Too many requests. Please slow down and try again shortly."},
            headers=rate_limit_headers(exc.result),
        )

    def rate_limit(scope: str):
        # Runs before body validation, so throttled clients never reach the pipeline.
        def check(request: Request, response: Response) -> RateLimitResult:
            peer = request.client.host if request.client else None
            result = limiter.check(scope, client_ip(request.headers, peer))
            if not result.ok:
                logger.info("Rate limited %s request (retry in %ss)", scope, result.retry_after_seconds)
                raise RateLimited(result)
            response.headers.update(rate_limit_headers(result))
            return result

        return check

    @app.get("/healthz")
    def healthz():
        return {
            "ok": True,
            "durableStorage": service.cache.durable is not None,
            "aiConfigured": bool(settings.gemini_api_key) or bool(settings.agent_url),
        }

    @app.post(
        "/analyze",
        response_model=AnalysisResult,
        dependencies=[Depends(rate_limit("analyze"))],
    )
    def analyze_endpoint(req: AnalyzeRequest):
        return service.analyze(req)

    @app.get(
        "/flagged",
        response_model=FlaggedSitesPage,
        dependencies=[Depends(rate_limit("flagged"))],
    )
    def flagged_endpoint(q: str | None = None, limit: int = DEFAULT_LIMIT, offset: int = 0):
        return service.flagged.query(q, limit=limit, offset=offset)

    return app


app = create_app()
