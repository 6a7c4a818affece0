"""
WhatsApp Business (Cloud API) client and notification service.

Business-initiated messages must use Meta-approved templates. Free-form
messages, interactive buttons and reactions only work inside the 24-hour
window after the recipient last wrote to us.

Usage:
    service = WhatsAppService()
    result = service.send_payment_link(
        phone="6125551234",
        parent_name="Amina Hassan",
        amount=16000,
        child_count=2,
        payment_url=checkout.url,
    )
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import httpx
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from madrasa.billing.tuition import format_rate
from madrasa.notifications.constants import DUGSI_PAYMENT_LINK_TEMPLATE
from madrasa.notifications.constants import DUPLICATE_WINDOW_HOURS
from madrasa.notifications.constants import MessageStatus
from madrasa.notifications.constants import MessageType
from madrasa.notifications.models import WhatsAppMessage
from madrasa.programs.constants import Program

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"
DEFAULT_API_VERSION = "v21.0"
US_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15
CHECKOUT_SESSION_RE = re.compile(r"cs_[a-zA-Z0-9_]+")
NON_DIGIT_RE = re.compile(r"\D")


class WhatsAppError(Exception):
    """Raised when the WhatsApp API rejects a request or stays unavailable."""

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


# =============================================================================
# Phone numbers and signatures
# =============================================================================


def format_phone_for_whatsapp(phone: str) -> str:
    """
    Digits-only international format expected by the Cloud API.

    A 10-digit number is assumed to be US and gets a ``1`` prefix.
    """
    digits = NON_DIGIT_RE.sub("", phone or "")
    if len(digits) == US_PHONE_DIGITS:
        return f"1{digits}"
    if US_PHONE_DIGITS < len(digits) <= MAX_PHONE_DIGITS:
        return digits
    msg = f"Invalid phone number format: {phone}"
    raise ValueError(msg)


def is_valid_phone_number(phone: str | None) -> bool:
    digits = NON_DIGIT_RE.sub("", phone or "")
    return US_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS


def verify_webhook_signature(payload: bytes | str, signature: str, app_secret: str) -> bool:
    """Check Meta's ``X-Hub-Signature-256`` header (``sha256=<hex>``)."""
    if not signature or not app_secret:
        return False
    if isinstance(payload, str):
        payload = payload.encode()
    digest = hmac.new(app_secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(f"sha256={digest}", signature)


# =============================================================================
# Client
# =============================================================================


class WhatsAppClient:
    """
    Thin wrapper over ``POST /{version}/{phone_number_id}/messages``.

    Rate limiting (429), server errors and transport failures are retried up
    to ``max_retries`` times with exponential backoff, honoring
    ``Retry-After`` when Meta sends it. Other 4xx responses fail at once.
    """

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ):
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_version = api_version
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.http_client = http_client

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_BASE_URL}/{self.api_version}/{self.phone_number_id}/messages"

    def _retry_delay(self, attempt: int, response: httpx.Response | None) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                return float(retry_after)
        return self.backoff_base * 2**attempt

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        # An injected client belongs to the caller; our own is closed per send.
        if self.http_client is not None:
            return self._post_with(self.http_client, body)
        with httpx.Client(timeout=self.timeout) as http_client:
            return self._post_with(http_client, body)

    def _post_with(self, http_client: httpx.Client, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        attempt = 0
        while True:
            response = None
            try:
                response = http_client.post(self.messages_url, json=body, headers=headers)
            except httpx.TransportError as exc:
                if attempt >= self.max_retries:
                    msg = f"WhatsApp API unreachable: {exc}"
                    raise WhatsAppError(msg) from exc
                logger.warning("WhatsApp transport error (attempt %s): %s", attempt + 1, exc)
            else:
                if response.is_success:
                    return response.json()
                retryable = (
                    response.status_code == httpx.codes.TOO_MANY_REQUESTS
                    or response.is_server_error
                )
                if not retryable or attempt >= self.max_retries:
                    msg = f"WhatsApp API error: {response.status_code} - {response.text}"
                    raise WhatsAppError(msg, response.status_code, _json_or_text(response))
                logger.warning(
                    "WhatsApp API returned %s (attempt %s), retrying",
                    response.status_code,
                    attempt + 1,
                )
            time.sleep(self._retry_delay(attempt, response))
            attempt += 1

    def _message(self, to: str, message_type: str, content: dict[str, Any]) -> dict[str, Any]:
        return self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": message_type,
                message_type: content,
            },
        )

    def send_template(
        self,
        to: str,
        template_name: str,
        language_code: str = "en",
        body_params: list[str] | None = None,
        button_params: list[str] | None = None,
    ) -> dict[str, Any]:
        components = []
        if body_params:
            components.append(
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": p} for p in body_params],
                },
            )
        if button_params:
            components.append(
                {
                    "type": "button",
                    "sub_type": "url",
                    "index": 0,
                    "parameters": [{"type": "text", "text": p} for p in button_params],
                },
            )
        template: dict[str, Any] = {
            "name": template_name,
            "language": {"code": language_code},
        }
        if components:
            template["components"] = components
        return self._message(to, "template", template)

    def send_message(self, to: str, text: str) -> dict[str, Any]:
        return self._message(to, "text", {"body": text})

    def send_interactive_buttons(
        self,
        to: str,
        body_text: str,
        buttons: list[dict[str, str]],
    ) -> dict[str, Any]:
        return self._message(
            to,
            "interactive",
            {
                "type": "button",
                "body": {"text": body_text},
                "action": {
                    "buttons": [
                        {"type": "reply", "reply": {"id": b["id"], "title": b["title"]}}
                        for b in buttons
                    ],
                },
            },
        )

    def react_to_message(self, to: str, message_id: str, emoji: str) -> dict[str, Any]:
        """React with ``emoji``; an empty string removes the reaction."""
        return self._message(to, "reaction", {"message_id": message_id, "emoji": emoji})


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def create_whatsapp_client(**kwargs) -> WhatsAppClient:
    """Build a client from settings; extra kwargs are passed through."""
    phone_number_id = getattr(settings, "WHATSAPP_PHONE_NUMBER_ID", "")
    access_token = getattr(settings, "WHATSAPP_ACCESS_TOKEN", "")
    if not phone_number_id or not access_token:
        msg = "WHATSAPP_PHONE_NUMBER_ID and WHATSAPP_ACCESS_TOKEN must be set"
        raise ImproperlyConfigured(msg)
    kwargs.setdefault("api_version", getattr(settings, "WHATSAPP_API_VERSION", DEFAULT_API_VERSION))
    kwargs.setdefault("max_retries", getattr(settings, "WHATSAPP_MAX_RETRIES", 3))
    kwargs.setdefault("timeout", getattr(settings, "WHATSAPP_TIMEOUT_SECONDS", 10.0))
    return WhatsAppClient(phone_number_id, access_token, **kwargs)


# =============================================================================
# Service
# =============================================================================


@dataclass(frozen=True)
class WhatsAppSendResult:
    success: bool
    wamid: str | None = None
    error: str | None = None


class WhatsAppService:
    """Template sends with duplicate protection and a message log."""

    def __init__(self, client: WhatsAppClient | None = None):
        self._client = client

    @property
    def client(self) -> WhatsAppClient:
        if self._client is None:
            self._client = create_whatsapp_client()
        return self._client

    def has_recent_message(self, phone: str, template_name: str) -> bool:
        since = timezone.now() - timedelta(hours=DUPLICATE_WINDOW_HOURS)
        return WhatsAppMessage.objects.filter(
            phone=phone,
            template_name=template_name,
            status=MessageStatus.SENT,
            created__gte=since,
        ).exists()

    def send_payment_link(
        self,
        *,
        phone: str,
        parent_name: str,
        amount: int,
        child_count: int,
        payment_url: str,
        person_id: int | None = None,
        family_id: str | None = None,
    ) -> WhatsAppSendResult:
        """
        Send the Dugsi payment link template to a parent.

        ``amount`` is the monthly family rate in cents. The template's URL
        button takes the checkout session id, not the full URL.
        """
        if not is_valid_phone_number(phone):
            logger.warning("Invalid phone number for WhatsApp: %r", phone)
            return WhatsAppSendResult(success=False, error="Invalid phone number format")

        to = format_phone_for_whatsapp(phone)
        template = DUGSI_PAYMENT_LINK_TEMPLATE
        if self.has_recent_message(to, template):
            logger.warning("Duplicate WhatsApp %s to %s blocked", template, to)
            return WhatsAppSendResult(
                success=False,
                error="Message already sent within the last hour",
            )

        session_match = CHECKOUT_SESSION_RE.search(payment_url or "")
        if session_match is None:
            logger.warning("No checkout session id in payment URL %r", payment_url)
            return WhatsAppSendResult(success=False, error="Invalid payment URL format")

        first_name = parent_name.split(" ")[0] if parent_name.strip() else parent_name
        body_params = [first_name, format_rate(amount), str(child_count)]
        log_fields = {
            "phone": to,
            "template_name": template,
            "message_type": MessageType.TRANSACTIONAL,
            "person_id": person_id,
            "program": Program.DUGSI_PROGRAM,
            "metadata": {
                "parentName": parent_name,
                "amount": amount,
                "childCount": child_count,
                "paymentUrl": payment_url,
                "familyId": family_id,
            },
        }

        try:
            response = self.client.send_template(
                to,
                template,
                body_params=body_params,
                button_params=[session_match.group(0)],
            )
        except WhatsAppError as exc:
            logger.exception("Failed to send WhatsApp payment link to %s", to)
            WhatsAppMessage.objects.create(
                status=MessageStatus.FAILED,
                failure_reason=str(exc),
                **log_fields,
            )
            return WhatsAppSendResult(success=False, error=str(exc))

        messages = response.get("messages") or [{}]
        wamid = messages[0].get("id", "")
        WhatsAppMessage.objects.create(status=MessageStatus.SENT, wamid=wamid, **log_fields)
        logger.info("Sent WhatsApp payment link %s to %s", wamid, to)
        return WhatsAppSendResult(success=True, wamid=wamid)
