"""Redis-backed store for in-progress wizard sessions.

Drafts are ephemeral: each save refreshes a TTL, and a
session nobody touches for `wizard_session_ttl_seconds` simply
disappears. Nothing here reaches the database.

Keys:
  wizard:{session_id}       →  JSON-encoded WizardState
  wizard-lock:{session_id}  →  owner token while a payment or submit
                               call runs (SET NX, expires on its own)
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis

from eta_service.config import settings
from eta_service.middleware.exceptions import ResourceNotFoundError, SubmissionStateError
from eta_service.services.wizard_state import WizardState

logger = logging.getLogger(__name__)

KEY_PREFIX = "wizard"
LOCK_PREFIX = "wizard-lock"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create the shared Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class WizardSessionStore:
    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int = settings.wizard_session_ttl_seconds,
        lock_seconds: int = settings.wizard_lock_seconds,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.lock_seconds = lock_seconds

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{KEY_PREFIX}:{session_id}"

    async def create(self) -> WizardState:
        state = WizardState()
        await self.save(state)
        logger.info("Started wizard session %s", state.session_id)
        return state

    async def load(self, session_id: str) -> WizardState:
        raw = await self.client.get(self._key(session_id))
        if raw is None:
            raise ResourceNotFoundError("Wizard session", session_id)
        return WizardState.from_dict(json.loads(raw))

    async def save(self, state: WizardState) -> None:
        await self.client.set(
            self._key(state.session_id),
            json.dumps(state.to_dict()),
            ex=self.ttl_seconds,
        )

    async def discard(self, session_id: str) -> None:
        await self.client.delete(self._key(session_id))

    @asynccontextmanager
    async def exclusive(
        self,
        session_id: str,
        busy_code: str = "SESSION_BUSY",
    ) -> AsyncIterator[WizardState]:
        """Load a session under its lock for one payment or submit call.

        A second caller arriving while the lock is held gets a 409
        (`busy_code`) without touching the session. In-flight flags found
        on the loaded state were left by a call that died holding an
        expired lock, so they are cleared.
        """
        lock_key = f"{LOCK_PREFIX}:{session_id}"
        token = uuid.uuid4().hex
        acquired = await self.client.set(lock_key, token, nx=True, ex=self.lock_seconds)
        if not acquired:
            logger.warning("Session %s busy (%s)", session_id, busy_code)
            raise SubmissionStateError(
                "Another payment or submission is already in progress for this application",
                busy_code,
            )
        try:
            state = await self.load(session_id)
            state.payment_in_flight = False
            state.submission_in_flight = False
            yield state
        finally:
            if await self.client.get(lock_key) == token:
                await self.client.delete(lock_key)
