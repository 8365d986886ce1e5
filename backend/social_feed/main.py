import logging
import sys
from contextlib import asynccontextmanager

from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from social_feed.api.v1 import feed, users

# Pipeline loggers (identity fallbacks, share strategies, degraded sources) print to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("social_feed").setLevel(logging.DEBUG)
from social_feed.config import settings
from social_feed.services.http_client import close_http_client, init_http_client
from social_feed.services.store_errors import AuthSessionError, StoreError, format_store_error, is_auth_expired
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_store_config()
    init_http_client(timeout=settings.store_timeout_seconds)
    yield
    await close_http_client()


limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"])

app = FastAPI(
    title="Social Feed API",
    description="Feed aggregation, identity resolution and post sharing over the hosted store",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.exception_handler(AuthSessionError)
async def auth_session_error_handler(request: Request, exc: AuthSessionError):
    return JSONResponse(status_code=401, content={"detail": str(exc) or "Not authenticated"})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    """Errors the pipeline did not absorb: expired session -> 401, anything else -> 502."""
    if is_auth_expired(exc):
        return JSONResponse(status_code=401, content={"detail": "Session expired"})
    logger.warning("Store error on %s %s: %s", request.method, request.url.path, format_store_error(exc))
    return JSONResponse(status_code=502, content={"detail": format_store_error(exc), "code": exc.code})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(feed.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
