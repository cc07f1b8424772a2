from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from swipefeed.core.config import get_settings
from swipefeed.core.logging import configure_logging
from swipefeed.core.rate_limit import limiter
from swipefeed.services.candidate_client import HttpCandidateFetcher
from swipefeed.services.feed import FeedEngine
from swipefeed.services.swipe_service import InMemoryPushChannel, PushChannel

settings = get_settings()
configure_logging(settings)
logger = structlog.get_logger()

# --- Sentry ---
if settings.SENTRY_DSN:
    import sentry_sdk

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=0.1,
        profiles_sample_rate=0.1,
        send_default_pii=False,
    )
    logger.info("sentry_initialized", environment=settings.SENTRY_ENVIRONMENT)


def build_feed(channel: PushChannel | None = None) -> FeedEngine:
    if channel is None:
        # loopback with no responder: likes time out and roll back
        logger.warning("push_channel_not_configured")
        channel = InMemoryPushChannel()
    return FeedEngine(HttpCandidateFetcher(), channel)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app_startup", app=settings.APP_NAME, version="0.1.0")
    owns_feed = getattr(app.state, "feed", None) is None
    if owns_feed:
        app.state.feed = build_feed(getattr(app.state, "push_channel", None))
        await app.state.feed.start()
    yield
    if owns_feed:
        await app.state.feed.close()
        app.state.feed = None
    logger.info("app_shutdown")


app = FastAPI(
    title="Swipefeed API",
    description="Swipe-and-match feed: candidate pagination, swipes and match delivery",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# --- Security Headers Middleware ---
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
from swipefeed.api.v1.feed import router as feed_router

app.include_router(feed_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health():
    checks = {"version": "0.1.0"}

    feed = getattr(app.state, "feed", None)
    checks["feed"] = "ok" if feed is not None else "stopped"
    if feed is not None:
        checks["network"] = "ok" if feed.network.online else "offline"
        checks["push_channel"] = "ok" if feed.channel.connected else "disconnected"

    # Candidate API
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(settings.CANDIDATE_API_URL, timeout=3)
            checks["candidate_api"] = "ok" if resp.status_code < 500 else f"status: {resp.status_code}"
    except httpx.HTTPError as e:
        checks["candidate_api"] = f"error: {e}"

    all_ok = all(v == "ok" for k, v in checks.items() if k != "version")
    checks["status"] = "ok" if all_ok else "degraded"

    return checks
