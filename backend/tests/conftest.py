"""Pytest configuration and fixtures for the UK ETA service tests.

External collaborators (Redis, Stripe, Resend, Turnstile, storage and the
application store) are replaced by in-memory fakes; the FastAPI app is
driven through httpx over ASGITransport with dependency overrides.
"""

import asyncio
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from eta_service.deps import (
    get_mailer,
    get_orchestrator,
    get_repository,
    get_session_store,
    get_verifier,
)
from eta_service.main import app
from eta_service.middleware.exceptions import BotVerificationError
from eta_service.models.application import STATUSES, SubmittedApplication
from eta_service.services.email import EmailSendError
from eta_service.services.payments import Charge, ChargeIntent, PaymentGatewayError
from eta_service.services.sessions import WizardSessionStore
from eta_service.services.submission import SubmissionOrchestrator


# ── Fakes ────────────────────────────────────────────────────────

class FakeRedis:
    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def delete(self, key):
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    async def ping(self):
        return True


class FakeGateway:
    def __init__(self):
        self.intents: list[dict] = []
        self.retrievals: list[str] = []
        self.intent_error: PaymentGatewayError | None = None
        self.retrieve_errors: list[PaymentGatewayError] = []
        self.charge_status = "succeeded"
        # Set `hold` to park calls until the test releases them
        self.hold: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def _wait(self):
        self.entered.set()
        if self.hold is not None:
            await self.hold.wait()

    async def create_charge_intent(self, amount, currency, receipt_email, metadata):
        await self._wait()
        if self.intent_error:
            raise self.intent_error
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents.append({
            "amount": amount,
            "currency": currency,
            "receipt_email": receipt_email,
            "metadata": metadata,
        })
        return ChargeIntent(intent_id=intent_id, client_secret=f"{intent_id}_secret_abc")

    async def retrieve_charge(self, intent_id):
        self.retrievals.append(intent_id)
        await self._wait()
        if self.retrieve_errors:
            raise self.retrieve_errors.pop(0)
        return Charge(intent_id=intent_id, status=self.charge_status, amount=8150, currency="gbp")


class FakeRepository:
    def __init__(self):
        self.records: dict[str, SubmittedApplication] = {}
        self.put_error: Exception | None = None
        self.put_calls = 0

    async def find_by_charge_id(self, payment_intent_id):
        for application in self.records.values():
            if application.payment_intent_id == payment_intent_id:
                return application
        return None

    async def find_by_reference(self, reference_number):
        return self.records.get(reference_number.strip().upper())

    async def lookup(self, reference_number, email):
        application = await self.find_by_reference(reference_number)
        if application is None or application.email.lower() != email.strip().lower():
            return None
        return application

    async def put(self, reference_number, fields):
        self.put_calls += 1
        if self.put_error:
            raise self.put_error
        now = datetime.utcnow()
        application = SubmittedApplication(
            reference_number=reference_number, submitted_at=now, updated_at=now, **fields
        )
        self.records[reference_number] = application
        return application

    async def update_status(self, reference_number, status):
        if status not in STATUSES:
            raise ValueError(f"Unknown status '{status}'")
        application = await self.find_by_reference(reference_number)
        if application is not None:
            application.status = status
            application.updated_at = datetime.utcnow()
        return application


class FakeStorage:
    def __init__(self):
        self.stored: dict[str, bytes] = {}
        self.fail = False

    async def store(self, path, data, content_type):
        if self.fail:
            raise OSError("bucket unavailable")
        self.stored[path] = data
        return f"https://media.test/{path}"


class FakeMailer:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send(self, to, subject, template, data, reply_to=None):
        if self.fail:
            raise EmailSendError("provider down")
        self.sent.append({
            "to": to,
            "subject": subject,
            "template": template,
            "data": data,
            "reply_to": reply_to,
        })
        return f"email_{len(self.sent)}"


class FakeVerifier:
    def __init__(self):
        self.tokens: list[str | None] = []

    async def require_human(self, token, remote_ip=None):
        self.tokens.append(token)
        if token != "human":
            raise BotVerificationError()


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def session_store(fake_redis) -> WizardSessionStore:
    return WizardSessionStore(fake_redis, ttl_seconds=7200)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def orchestrator(gateway, repository, storage, mailer, verifier) -> SubmissionOrchestrator:
    return SubmissionOrchestrator(
        gateway,
        repository,
        storage,
        mailer,
        verifier,
        amount=8150,
        currency="gbp",
        admin_email="admin@test.example",
        status_url="https://eta.test/status",
    )


@pytest_asyncio.fixture
async def client(
    session_store, orchestrator, repository, mailer, verifier
) -> AsyncGenerator[AsyncClient, None]:
    """Test client with every collaborator overridden by a fake."""
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_verifier] = lambda: verifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
    config.addinivalue_line("markers", "integration: Integration tests")
