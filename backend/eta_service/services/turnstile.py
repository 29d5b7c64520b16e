"""Cloudflare Turnstile server-side token verification.

Every user-submitted form (contact, payment, submission) passes through
`require_human()` before any other work. With no secret configured the
check is skipped with a warning so local development works offline.
"""

import logging
from dataclasses import dataclass

import httpx

from eta_service.config import settings
from eta_service.middleware.exceptions import BotVerificationError

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    success: bool
    error_message: str | None = None


class TurnstileVerifier:
    def __init__(
        self,
        client: httpx.AsyncClient,
        secret_key: str = settings.turnstile_secret_key,
        verify_url: str = settings.turnstile_verify_url,
    ):
        self.client = client
        self.secret_key = secret_key
        self.verify_url = verify_url

    async def verify(self, token: str | None, remote_ip: str | None = None) -> VerificationResult:
        if not self.secret_key:
            logger.warning("TURNSTILE_SECRET_KEY not set, skipping verification")
            return VerificationResult(success=True)

        if not token:
            return VerificationResult(False, "Security verification is required")

        form = {"secret": self.secret_key, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            resp = await self.client.post(self.verify_url, data=form)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Turnstile verification error: %s", exc)
            return VerificationResult(False, "Security verification unavailable. Please try again.")

        if not data.get("success"):
            logger.warning("Turnstile verification failed: %s", data.get("error-codes"))
            return VerificationResult(False, "Security verification failed. Please try again.")

        return VerificationResult(success=True)

    async def require_human(self, token: str | None, remote_ip: str | None = None) -> None:
        """Raise BotVerificationError unless the token verifies."""
        result = await self.verify(token, remote_ip)
        if not result.success:
            raise BotVerificationError(result.error_message)
