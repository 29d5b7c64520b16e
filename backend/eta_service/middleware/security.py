"""Security headers for every response.

The CSP admits the two third-party origins the application pages load
scripts and frames from: Stripe (payment element) and Cloudflare
Turnstile (bot check).
"""

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from eta_service.config import settings

STRIPE_ORIGINS = "https://js.stripe.com https://api.stripe.com"
TURNSTILE_ORIGIN = "https://challenges.cloudflare.com"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Camera stays on for the selfie step; payment for Stripe wallets
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=(self), payment=(self)"
        )

        if settings.environment == "production":
            response.headers["Content-Security-Policy"] = (
                "default-src 'self'; "
                f"script-src 'self' {STRIPE_ORIGINS} {TURNSTILE_ORIGIN}; "
                "style-src 'self' 'unsafe-inline'; "
                "img-src 'self' data: blob: https:; "
                f"connect-src 'self' {STRIPE_ORIGINS}; "
                f"frame-src {STRIPE_ORIGINS} {TURNSTILE_ORIGIN}; "
                "frame-ancestors 'none'; "
                "base-uri 'self'; "
                "form-action 'self';"
            )

        return response
