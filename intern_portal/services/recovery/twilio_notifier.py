"""
Twilio direct SMS notifier
"""
import asyncio
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from ...core.config import settings
from ...utils.phone import get_phone_last4, to_e164
from .notifier import DispatchResult, Notifier

logger = logging.getLogger(__name__)


class TwilioSMSNotifier(Notifier):
    """
    Twilio direct SMS notifier.

    Requires TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and OTP_FROM_NUMBER.
    """

    name = "twilio_sms"

    def __init__(self, client: Optional[Client] = None, from_number: Optional[str] = None):
        if client is None:
            if not settings.twilio_configured:
                raise ValueError("Twilio credentials not configured")
            client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)

        self.from_number = from_number or settings.OTP_FROM_NUMBER
        if not self.from_number:
            raise ValueError("OTP_FROM_NUMBER not configured for SMS notifier")

        self.client = client

    async def send(self, phone: str, code: str) -> DispatchResult:
        phone_last4 = get_phone_last4(phone)
        body = (
            f"Your {settings.APP_NAME} password reset code is: {code}. "
            f"It expires in {settings.RECOVERY_OTP_TTL_MINUTES} minutes."
        )

        try:
            to = to_e164(phone)
        except ValueError as e:
            logger.error(f"[Recovery][TwilioSMS] Cannot format ...{phone_last4} as E.164: {e}")
            return DispatchResult(success=False, provider=self.name, error="Invalid destination number")

        try:
            # Twilio's REST client is blocking
            message = await asyncio.to_thread(
                self.client.messages.create,
                body=body,
                from_=self.from_number,
                to=to,
            )
        except TwilioException as e:
            logger.error(f"[Recovery][TwilioSMS] Failed to send SMS to ...{phone_last4}: {e}")
            return DispatchResult(success=False, provider=self.name, error=str(e))

        logger.info(f"[Recovery][TwilioSMS] SMS sent to ...{phone_last4}, SID: {message.sid}")
        return DispatchResult(success=True, provider=self.name, message_id=message.sid)
