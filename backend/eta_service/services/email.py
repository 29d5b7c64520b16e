"""Transactional email via the Resend REST API.

Bodies are Jinja2 templates under ``eta_service/templates/emails``:

    confirmation.html        applicant, after a successful submission
    admin_notification.html  operator copy of every new application
    status_update.html       applicant, when back office changes status
    contact_message.html     operator, from the public contact form

`EmailSender.send()` raises `EmailSendError`; whether that is fatal is
the caller's decision.
"""

import logging
from pathlib import Path

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from eta_service.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

templates = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
)


def format_amount(pence: int, currency: str = "gbp") -> str:
    symbol = "£" if currency.lower() == "gbp" else ""
    return f"{symbol}{pence / 100:.2f} {currency.upper()}"


templates.filters["money"] = format_amount


class EmailSendError(Exception):
    pass


class EmailSender:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str = settings.resend_api_key,
        api_base: str = settings.resend_api_base,
        from_email: str = settings.from_email,
    ):
        self.client = client
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.from_email = from_email

    @staticmethod
    def render(template: str, data: dict) -> str:
        return templates.get_template(f"emails/{template}.html").render(**data)

    async def send(
        self,
        to: str,
        subject: str,
        template: str,
        data: dict,
        reply_to: str | None = None,
    ) -> str | None:
        """Render `template` with `data` and send it. Returns the provider id."""
        html = self.render(template, data)

        if not self.api_key:
            logger.warning("RESEND_API_KEY not set, not sending '%s' to %s", subject, to)
            return None

        payload = {
            "from": self.from_email,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            resp = await self.client.post(
                f"{self.api_base}/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as exc:
            raise EmailSendError(f"Email provider unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise EmailSendError(f"Email provider returned {resp.status_code}: {resp.text[:200]}")

        message_id = resp.json().get("id")
        logger.info("Sent '%s' email to %s (%s)", template, to, message_id)
        return message_id
