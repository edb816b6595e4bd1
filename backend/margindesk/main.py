"""
MarginDesk API
FastAPI backend for cost-plus pricing, revenue-tiered margins and the
below-floor quote authorization gate.
"""
import os
import logging
import time
import collections
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

# Load .env before anything reads os.getenv at import time
load_dotenv()

from margindesk.services.logging_config import setup_logging
from margindesk.services.middleware import RequestTimingMiddleware
from margindesk.services.errors import (
    ConfigurationError,
    InvalidRateError,
    PricingEngineError,
    StaleStateError,
    ValidationError,
)

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("margindesk-api")

# Startup validation
for var in ["DATABASE_URL", "JWT_SECRET_KEY"]:
    if not os.getenv(var):
        logger.warning(f"MISSING env var: {var}, running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from margindesk.db import init_db, engine
    await init_db()
    yield
    await engine.dispose()


app = FastAPI(
    title="MarginDesk Pricing API",
    version="1.0.0",
    description="Tiered margin pricing and below-minimum quote authorization",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
ERROR_STATUS = {
    ValidationError: 422,
    InvalidRateError: 422,
    ConfigurationError: 409,
    StaleStateError: 409,
}


def error_status(exc: PricingEngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 400


@app.exception_handler(PricingEngineError)
async def pricing_error_handler(request: Request, exc: PricingEngineError):
    status_code = error_status(exc)
    body = exc.to_dict()
    if isinstance(exc, StaleStateError):
        body["action"] = exc.action
        body["current"] = jsonable_encoder(exc.current) if isinstance(exc.current, dict) else None
    else:
        logger.warning(
            f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}",
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Rate Limiting Middleware
# ---------------------------------------------------------------------------
class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding-window rate limiter.
    Buckets:
      - gate actions (send / approve / reject / convert) : 20 req/min per IP
      - everything else                                  : 120 req/min per IP
    """
    GATE_SUFFIXES = ("/send", "/admin-approve", "/admin-reject", "/client-approve", "/client-reject", "/convert")

    def __init__(self, app):
        super().__init__(app)
        # {bucket_key: deque of timestamps}
        self._windows: dict = collections.defaultdict(collections.deque)

    def _get_limit(self, path: str) -> int:
        if path.endswith(self.GATE_SUFFIXES):
            return 20
        return 120

    async def dispatch(self, request: Request, call_next):
        ip = request.client.host if request.client else "unknown"
        path = request.url.path
        limit = self._get_limit(path)
        bucket = f"{ip}:{'gate' if limit <= 20 else 'general'}"
        now = time.monotonic()
        window = self._windows[bucket]
        # Remove entries older than 60 seconds
        while window and now - window[0] > 60:
            window.popleft()
        if len(window) >= limit:
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please slow down."},
                headers={"Retry-After": "60"},
            )
        window.append(now)
        return await call_next(request)


# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ---------------------------------------------------------------------------
# CORS: restricted to allowed origins from env
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RateLimitMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from margindesk.api.pricing_routes import router as pricing_router
from margindesk.api.quote_routes import router as quote_router

app.include_router(pricing_router)
app.include_router(quote_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "db_configured": bool(os.getenv("DATABASE_URL")),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("margindesk.main:app", host="0.0.0.0", port=8000, reload=True)
