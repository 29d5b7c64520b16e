import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from eta_service.config import settings
from eta_service.middleware.exceptions import register_exception_handlers
from eta_service.middleware.security import SecurityHeadersMiddleware
from eta_service.routers import contact, health, status, wizard
from eta_service.services.sessions import close_redis

logger = logging.getLogger("eta_service")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the shared outbound HTTP client and the Redis pool."""
    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    logger.info("UK ETA service starting (%s)", settings.environment)
    yield
    await app.state.http_client.aclose()
    await close_redis()
    logger.info("UK ETA service stopped")


app = FastAPI(
    title="UK ETA Service",
    description="UK Electronic Travel Authorisation application service",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (outermost first) ─────────────────────────────
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(wizard.router, prefix="/api/wizard", tags=["wizard"])
app.include_router(status.router, prefix="/api/status", tags=["status"])
app.include_router(contact.router, prefix="/api/contact", tags=["contact"])

# Uploaded application photos
app.mount("/media", StaticFiles(directory=settings.storage_root, check_dir=False), name="media")
