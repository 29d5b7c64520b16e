"""FastAPI dependencies wiring routers to their collaborators.

Dependencies:
  get_http_client     → shared httpx.AsyncClient (created in lifespan)
  get_session_store   → Redis-backed WizardSessionStore
  get_repository      → ApplicationRepository on the request's DB session
  get_orchestrator    → SubmissionOrchestrator with all collaborators

Tests swap any of these out via `app.dependency_overrides`.
"""

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from eta_service.database import get_db
from eta_service.services.applications import ApplicationRepository
from eta_service.services.email import EmailSender
from eta_service.services.payments import StripeGateway
from eta_service.services.sessions import WizardSessionStore, get_redis
from eta_service.services.storage import FileStorage
from eta_service.services.submission import SubmissionOrchestrator
from eta_service.services.turnstile import TurnstileVerifier


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


async def get_session_store() -> WizardSessionStore:
    return WizardSessionStore(await get_redis())


def get_payment_gateway(client: httpx.AsyncClient = Depends(get_http_client)) -> StripeGateway:
    return StripeGateway(client)


def get_mailer(client: httpx.AsyncClient = Depends(get_http_client)) -> EmailSender:
    return EmailSender(client)


def get_verifier(client: httpx.AsyncClient = Depends(get_http_client)) -> TurnstileVerifier:
    return TurnstileVerifier(client)


def get_storage() -> FileStorage:
    return FileStorage()


def get_repository(db: AsyncSession = Depends(get_db)) -> ApplicationRepository:
    return ApplicationRepository(db)


def get_orchestrator(
    payments: StripeGateway = Depends(get_payment_gateway),
    repository: ApplicationRepository = Depends(get_repository),
    storage: FileStorage = Depends(get_storage),
    mailer: EmailSender = Depends(get_mailer),
    verifier: TurnstileVerifier = Depends(get_verifier),
) -> SubmissionOrchestrator:
    return SubmissionOrchestrator(payments, repository, storage, mailer, verifier)


def client_ip(request: Request) -> str | None:
    """Caller IP for the bot check, honouring a proxy's X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
