"""Stripe PaymentIntents over the REST API.

Only the two calls the submission flow needs:

    POST /v1/payment_intents          create_charge_intent()
    GET  /v1/payment_intents/{id}     retrieve_charge()

Stripe's own error message is carried on `PaymentGatewayError.message`
so it can be shown to the applicant verbatim.
"""

import logging
from dataclasses import dataclass

import httpx

from eta_service.config import settings

logger = logging.getLogger(__name__)

SERVICE_TAG = "uk-eta-application"


@dataclass
class ChargeIntent:
    intent_id: str
    client_secret: str


@dataclass
class Charge:
    intent_id: str
    status: str
    amount: int  # minor units
    currency: str

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentGatewayError(Exception):
    """Stripe rejected the call or could not be reached.

    `transient` marks network-level failures that may be retried.
    """

    def __init__(self, message: str, transient: bool = False):
        self.message = message
        self.transient = transient
        super().__init__(message)


class StripeGateway:
    def __init__(
        self,
        client: httpx.AsyncClient,
        secret_key: str = settings.stripe_secret_key,
        api_base: str = settings.stripe_api_base,
    ):
        self.client = client
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")

    async def _request(self, method: str, path: str, data: dict | None = None) -> dict:
        try:
            resp = await self.client.request(
                method,
                f"{self.api_base}{path}",
                data=data,
                auth=(self.secret_key, ""),
            )
        except httpx.HTTPError as exc:
            logger.warning("Stripe %s %s failed: %s", method, path, exc)
            raise PaymentGatewayError(
                "Payment service is temporarily unavailable. Please try again.",
                transient=True,
            ) from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            message = (body.get("error") or {}).get("message") or "Payment initialisation failed"
            logger.warning("Stripe %s %s -> %s: %s", method, path, resp.status_code, message)
            raise PaymentGatewayError(message, transient=resp.status_code >= 500)
        return body

    async def create_charge_intent(
        self,
        amount: int,
        currency: str,
        receipt_email: str,
        metadata: dict[str, str],
    ) -> ChargeIntent:
        data = {
            "amount": str(amount),
            "currency": currency,
            "receipt_email": receipt_email,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in {**metadata, "service": SERVICE_TAG}.items():
            data[f"metadata[{key}]"] = str(value)

        body = await self._request("POST", "/payment_intents", data=data)
        logger.info("Created payment intent %s for %d %s", body["id"], amount, currency)
        return ChargeIntent(intent_id=body["id"], client_secret=body["client_secret"])

    async def retrieve_charge(self, intent_id: str) -> Charge:
        body = await self._request("GET", f"/payment_intents/{intent_id}")
        return Charge(
            intent_id=body["id"],
            status=body["status"],
            amount=body["amount"],
            currency=body["currency"],
        )
