"""
Channel providers for outbound delivery.

Each channel exposes a single "send" capability that returns a provider
identifier or raises ProviderError:
- sms / whatsapp: Twilio Messages API
- voice: Twilio Calls API (TwiML <Say>)
- email: SendGrid v3 mail/send

When OUTBOUND_PROVIDER_MODE=mock, or Twilio credentials are missing for a
Twilio channel, a deterministic mock sender is used instead so local and
staging environments never reach a real customer.
"""

from dataclasses import dataclass
from uuid import uuid4
from xml.sax.saxutils import escape

import httpx

from app.config import settings
from app.core.errors import ProviderError
from app.features.outbound.domain import OutboundJob
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass(slots=True)
class ProviderReceipt:
    """What a provider returned for one send."""

    provider: str  # "twilio" | "sendgrid" | "mock"
    status: str
    message_id: str | None = None
    call_sid: str | None = None


def provider_for_channel(channel: str) -> str:
    return "sendgrid" if channel == "email" else "twilio"


def _twiml_say(text: str) -> str:
    body = escape(text, {'"': "&quot;", "'": "&apos;"})
    return f'<?xml version="1.0" encoding="UTF-8"?><Response><Say>{body}</Say></Response>'


class OutboundProviders:
    """
    Routes a rendered message to the job's channel provider.

    An httpx.AsyncClient can be injected (tests use httpx.MockTransport);
    otherwise a short-lived client is opened per send.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    def _use_mock(self, channel: str) -> bool:
        if settings.OUTBOUND_PROVIDER_MODE == "mock":
            return True
        return channel != "email" and not settings.twilio_configured()

    async def send(
        self,
        job: OutboundJob,
        text: str,
        subject: str | None = None,
        html: str | None = None,
    ) -> ProviderReceipt:
        """
        Deliver text to job.target_address over job.channel.

        Raises:
            ProviderError: provider rejected the send or was unreachable.
        """
        if self._use_mock(job.channel):
            receipt = self._mock_send(job)
            logger.info("Mock outbound send", job_id=job.id, channel=job.channel, message_id=receipt.message_id)
            return receipt

        if job.channel in ("sms", "whatsapp"):
            return await self._send_twilio_message(job, text)
        if job.channel == "voice":
            return await self._start_twilio_call(job, text)
        if job.channel == "email":
            return await self._send_sendgrid_email(job, subject or "Notification", text, html)

        raise ProviderError(f"Unsupported channel: {job.channel}", code="UNSUPPORTED_CHANNEL")

    @staticmethod
    def _mock_send(job: OutboundJob) -> ProviderReceipt:
        sid = f"mock-{job.channel}-{job.id}-{uuid4().hex[:8]}"
        if job.channel == "voice":
            return ProviderReceipt(provider="mock", status="queued", call_sid=sid)
        return ProviderReceipt(provider="mock", status="sent", message_id=sid)

    async def _post(self, url: str, provider: str, **kwargs) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.post(url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=settings.PROVIDER_HTTP_TIMEOUT) as client:
                    response = await client.post(url, **kwargs)
        except httpx.RequestError as e:
            logger.warning("Provider request error", provider=provider, error=str(e), error_type=type(e).__name__)
            raise ProviderError(f"{provider} unreachable: {e}", code="PROVIDER_UNREACHABLE", provider=provider) from e

        if not response.is_success:
            raise self._error_from_response(response, provider)
        return response

    @staticmethod
    def _json_body(response: httpx.Response, provider: str) -> dict:
        try:
            data = response.json()
        except ValueError:
            logger.warning("Provider returned a non-JSON body", provider=provider, status_code=response.status_code)
            return {}
        return data if isinstance(data, dict) else {}

    def _error_from_response(self, response: httpx.Response, provider: str) -> ProviderError:
        data = self._json_body(response, provider)

        if provider == "twilio":
            code = data.get("code")
            message = data.get("message") or f"Twilio error (HTTP {response.status_code})"
            error_code = f"TWILIO_{code}" if code else f"TWILIO_HTTP_{response.status_code}"
        else:
            errors = data.get("errors") or []
            message = errors[0].get("message") if errors else f"SendGrid error (HTTP {response.status_code})"
            error_code = f"SENDGRID_HTTP_{response.status_code}"

        logger.warning("Provider rejected send", provider=provider, status_code=response.status_code, error_code=error_code)
        return ProviderError(message, code=error_code, provider=provider)

    def _twilio_auth(self) -> tuple[str, str]:
        return (settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)

    async def _send_twilio_message(self, job: OutboundJob, body: str) -> ProviderReceipt:
        if job.channel == "whatsapp":
            sender = settings.twilio_whatsapp_sender()
            if not sender:
                raise ProviderError("Missing TWILIO_WHATSAPP_NUMBER/TWILIO_PHONE_NUMBER", code="PROVIDER_NOT_CONFIGURED", provider="twilio")
            to = job.target_address if job.target_address.startswith("whatsapp:") else f"whatsapp:{job.target_address}"
        else:
            sender = settings.TWILIO_PHONE_NUMBER
            if not sender:
                raise ProviderError("Missing TWILIO_PHONE_NUMBER", code="PROVIDER_NOT_CONFIGURED", provider="twilio")
            to = job.target_address

        url = f"{TWILIO_API_BASE}/Accounts/{settings.TWILIO_ACCOUNT_SID}/Messages.json"
        response = await self._post(url, "twilio", data={"From": sender, "To": to, "Body": body}, auth=self._twilio_auth())
        data = self._json_body(response, "twilio")
        return ProviderReceipt(provider="twilio", status=data.get("status", "queued"), message_id=data.get("sid"))

    async def _start_twilio_call(self, job: OutboundJob, say_text: str) -> ProviderReceipt:
        sender = settings.TWILIO_PHONE_NUMBER
        if not sender:
            raise ProviderError("Missing TWILIO_PHONE_NUMBER", code="PROVIDER_NOT_CONFIGURED", provider="twilio")

        url = f"{TWILIO_API_BASE}/Accounts/{settings.TWILIO_ACCOUNT_SID}/Calls.json"
        response = await self._post(
            url,
            "twilio",
            data={"From": sender, "To": job.target_address, "Twiml": _twiml_say(say_text)},
            auth=self._twilio_auth(),
        )
        data = self._json_body(response, "twilio")
        return ProviderReceipt(provider="twilio", status=data.get("status", "queued"), call_sid=data.get("sid"))

    async def _send_sendgrid_email(
        self, job: OutboundJob, subject: str, text: str, html: str | None
    ) -> ProviderReceipt:
        if not settings.SENDGRID_API_KEY:
            raise ProviderError("Missing SENDGRID_API_KEY", code="PROVIDER_NOT_CONFIGURED", provider="sendgrid")

        payload = {
            "personalizations": [{"to": [{"email": job.target_address}]}],
            "from": {"email": settings.EMAIL_FROM},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html or text},
            ],
        }
        response = await self._post(
            SENDGRID_SEND_URL,
            "sendgrid",
            json=payload,
            headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        )
        # SendGrid answers 202 with the id in a header (may be absent)
        return ProviderReceipt(
            provider="sendgrid",
            status="queued",
            message_id=response.headers.get("x-message-id"),
        )


# Singleton used by the runner
outbound_providers = OutboundProviders()
