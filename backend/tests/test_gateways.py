"""Tests for the Stripe, Resend and Turnstile HTTP clients."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from eta_service.middleware.exceptions import BotVerificationError
from eta_service.models.application import SubmittedApplication
from eta_service.services.email import EmailSendError, EmailSender, format_amount
from eta_service.services.payments import PaymentGatewayError, StripeGateway
from eta_service.services.turnstile import TurnstileVerifier


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
@pytest.mark.asyncio
class TestStripeGateway:

    async def test_create_charge_intent(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id": "pi_1", "client_secret": "pi_1_secret"})

        async with _client(handler) as client:
            gateway = StripeGateway(client, secret_key="sk_test_123", api_base="https://stripe.test/v1")
            intent = await gateway.create_charge_intent(
                amount=8150,
                currency="gbp",
                receipt_email="jane.doe@example.com",
                metadata={"applicant_name": "Jane Doe"},
            )

        assert intent.intent_id == "pi_1"
        assert intent.client_secret == "pi_1_secret"
        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/payment_intents"
        assert seen["auth"].startswith("Basic ")
        form = seen["form"]
        assert form["amount"] == ["8150"]
        assert form["currency"] == ["gbp"]
        assert form["receipt_email"] == ["jane.doe@example.com"]
        assert form["automatic_payment_methods[enabled]"] == ["true"]
        assert form["metadata[applicant_name]"] == ["Jane Doe"]
        assert form["metadata[service]"] == ["uk-eta-application"]

    async def test_processor_error_message_passed_through(self):
        def handler(request):
            return httpx.Response(402, json={"error": {"message": "Your card was declined."}})

        async with _client(handler) as client:
            gateway = StripeGateway(client, secret_key="sk_test_123")
            with pytest.raises(PaymentGatewayError) as exc_info:
                await gateway.retrieve_charge("pi_1")

        assert exc_info.value.message == "Your card was declined."
        assert exc_info.value.transient is False

    async def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        async with _client(handler) as client:
            gateway = StripeGateway(client, secret_key="sk_test_123")
            with pytest.raises(PaymentGatewayError) as exc_info:
                await gateway.retrieve_charge("pi_1")

        assert exc_info.value.transient is True

    async def test_retrieve_charge(self):
        def handler(request):
            assert request.url.path.endswith("/payment_intents/pi_1")
            return httpx.Response(
                200, json={"id": "pi_1", "status": "succeeded", "amount": 8150, "currency": "gbp"}
            )

        async with _client(handler) as client:
            charge = await StripeGateway(client, secret_key="sk_test_123").retrieve_charge("pi_1")

        assert charge.succeeded
        assert charge.amount == 8150


@pytest.mark.unit
@pytest.mark.asyncio
class TestEmailSender:

    async def test_send(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "email_1"})

        async with _client(handler) as client:
            sender = EmailSender(client, api_key="re_test", api_base="https://resend.test", from_email="noreply@eta.test")
            message_id = await sender.send(
                to="jane.doe@example.com",
                subject="Application Received - ETA-ABC-1234",
                template="confirmation",
                data={
                    "reference_number": "ETA-ABC-1234",
                    "applicant_name": "Jane Doe",
                    "email": "jane.doe@example.com",
                    "submitted_at": "19 October 2026",
                    "status_url": "https://eta.test/status",
                },
                reply_to="support@eta.test",
            )

        assert message_id == "email_1"
        assert seen["auth"] == "Bearer re_test"
        body = seen["body"]
        assert body["to"] == ["jane.doe@example.com"]
        assert body["from"] == "noreply@eta.test"
        assert body["reply_to"] == "support@eta.test"
        assert "ETA-ABC-1234" in body["html"]

    async def test_without_api_key_nothing_is_sent(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with _client(handler) as client:
            sender = EmailSender(client, api_key="")
            result = await sender.send(
                to="jane.doe@example.com",
                subject="Update",
                template="status_update",
                data={
                    "reference_number": "ETA-ABC-1234",
                    "applicant_name": "Jane Doe",
                    "status": "approved",
                    "status_url": "https://eta.test/status",
                },
            )

        assert result is None

    async def test_provider_error(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        async with _client(handler) as client:
            sender = EmailSender(client, api_key="re_test")
            with pytest.raises(EmailSendError):
                await sender.send(
                    to="ops@eta.test",
                    subject="[Contact] Other",
                    template="contact_message",
                    data={
                        "name": "Jane",
                        "email": "jane.doe@example.com",
                        "reference_number": None,
                        "subject": "Other",
                        "message": "Hello",
                    },
                )


@pytest.mark.unit
class TestEmailTemplates:

    def test_admin_notification_renders_application(self):
        application = SubmittedApplication(
            reference_number="ETA-ABC-1234",
            payment_intent_id="pi_1",
            payment_amount=8150,
            payment_currency="gbp",
            email="jane.doe@example.com",
            first_name="Jane",
            last_name="Doe",
        )
        html = EmailSender.render(
            "admin_notification",
            {"application": application, "applicant_name": "Jane Doe", "submitted_at": "19 October 2026"},
        )
        assert "ETA-ABC-1234" in html
        assert "£81.50 GBP" in html

    def test_contact_message_is_escaped(self):
        html = EmailSender.render(
            "contact_message",
            {
                "name": "<script>alert(1)</script>",
                "email": "jane.doe@example.com",
                "reference_number": None,
                "subject": "Other",
                "message": "hi",
            },
        )
        assert "<script>" not in html

    def test_format_amount(self):
        assert format_amount(8150) == "£81.50 GBP"
        assert format_amount(1000, "usd") == "10.00 USD"


@pytest.mark.unit
@pytest.mark.asyncio
class TestTurnstileVerifier:

    async def test_success(self):
        seen = {}

        def handler(request):
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"success": True})

        async with _client(handler) as client:
            verifier = TurnstileVerifier(client, secret_key="ts_secret", verify_url="https://ts.test/verify")
            result = await verifier.verify("token-1", remote_ip="203.0.113.7")

        assert result.success
        assert seen["form"] == {
            "secret": ["ts_secret"],
            "response": ["token-1"],
            "remoteip": ["203.0.113.7"],
        }

    async def test_failure(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error-codes": ["invalid-input-response"]})

        async with _client(handler) as client:
            verifier = TurnstileVerifier(client, secret_key="ts_secret")
            result = await verifier.verify("token-1")
            assert not result.success
            assert result.error_message == "Security verification failed. Please try again."

            with pytest.raises(BotVerificationError):
                await verifier.require_human("token-1")

    async def test_missing_token(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with _client(handler) as client:
            result = await TurnstileVerifier(client, secret_key="ts_secret").verify(None)

        assert not result.success
        assert result.error_message == "Security verification is required"

    async def test_skipped_without_secret(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with _client(handler) as client:
            await TurnstileVerifier(client, secret_key="").require_human(None)

    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out")

        async with _client(handler) as client:
            result = await TurnstileVerifier(client, secret_key="ts_secret").verify("token-1")

        assert not result.success
