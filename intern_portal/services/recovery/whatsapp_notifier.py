"""
WhatsApp Cloud API notifier
"""
import logging
from typing import Any, Dict, Optional

import httpx

from ...core.config import settings
from ...utils.phone import get_phone_last4
from .notifier import DispatchResult, Notifier

logger = logging.getLogger(__name__)

# Graph API error: recipient is not in the test number list of a dev app
RECIPIENT_NOT_ALLOWED = 131026


class WhatsAppNotifier(Notifier):
    """
    Delivers codes through the WhatsApp Cloud API.

    Uses the configured authentication template when WHATSAPP_OTP_TEMPLATE
    is set (required outside the 24h customer-service window), plain text
    otherwise.
    """

    name = "whatsapp"

    def __init__(
        self,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_url: Optional[str] = None,
        api_version: Optional[str] = None,
        template_name: Optional[str] = None,
        template_language: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.phone_number_id = phone_number_id if phone_number_id is not None else settings.WHATSAPP_PHONE_NUMBER_ID
        self.access_token = access_token if access_token is not None else settings.WHATSAPP_ACCESS_TOKEN
        self.api_url = (api_url or settings.WHATSAPP_API_URL).rstrip("/")
        self.api_version = api_version or settings.WHATSAPP_API_VERSION
        self.template_name = template_name if template_name is not None else settings.WHATSAPP_OTP_TEMPLATE
        self.template_language = template_language or settings.WHATSAPP_TEMPLATE_LANGUAGE
        self.timeout = timeout or settings.WHATSAPP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/{self.api_version}/{self.phone_number_id}/messages"

    def _build_payload(self, phone: str, code: str) -> Dict[str, Any]:
        if self.template_name:
            return {
                "messaging_product": "whatsapp",
                "to": phone,
                "type": "template",
                "template": {
                    "name": self.template_name,
                    "language": {"code": self.template_language},
                    "components": [
                        {"type": "body", "parameters": [{"type": "text", "text": code}]},
                    ],
                },
            }
        return {
            "messaging_product": "whatsapp",
            "to": phone,
            "type": "text",
            "text": {
                "body": (
                    f"Your {settings.APP_NAME} password reset code is {code}. "
                    f"It expires in {settings.RECOVERY_OTP_TTL_MINUTES} minutes. Do not share it."
                )
            },
        }

    async def send(self, phone: str, code: str) -> DispatchResult:
        phone_last4 = get_phone_last4(phone)

        if not self.phone_number_id or not self.access_token:
            logger.error(
                "[Recovery][WhatsApp] Credentials not configured "
                f"(phone number id set: {bool(self.phone_number_id)}, access token set: {bool(self.access_token)})"
            )
            return DispatchResult(success=False, provider=self.name, error="WhatsApp credentials not configured")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        payload = self._build_payload(phone, code)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.messages_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error = _graph_error(e.response)
            if error.get("code") == RECIPIENT_NOT_ALLOWED:
                logger.error(
                    f"[Recovery][WhatsApp] Recipient ...{phone_last4} not in test numbers. Add it in the Meta dashboard."
                )
            logger.error(
                f"[Recovery][WhatsApp] Send failed for ...{phone_last4}: "
                f"status={e.response.status_code}, error={error.get('message', 'WhatsApp API error')}"
            )
            return DispatchResult(
                success=False,
                provider=self.name,
                error=error.get("message") or f"WhatsApp API returned {e.response.status_code}",
            )
        except httpx.HTTPError as e:
            logger.error(f"[Recovery][WhatsApp] Transport error for ...{phone_last4}: {e}")
            return DispatchResult(success=False, provider=self.name, error=str(e) or e.__class__.__name__)

        message_id = None
        try:
            messages = response.json().get("messages") or []
            if messages:
                message_id = messages[0].get("id")
        except ValueError:
            logger.debug("[Recovery][WhatsApp] Response body was not JSON")

        logger.info(f"[Recovery][WhatsApp] Code sent to ...{phone_last4}, message id: {message_id}")
        return DispatchResult(success=True, provider=self.name, message_id=message_id)


def _graph_error(response: httpx.Response) -> Dict[str, Any]:
    """Extract the Graph API error object from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}
