"""
Notifier factory
"""
import logging
from typing import Optional

from ...core.config import settings
from .notifier import Notifier
from .stub_notifier import StubNotifier
from .twilio_notifier import TwilioSMSNotifier
from .whatsapp_notifier import WhatsAppNotifier

logger = logging.getLogger(__name__)

_notifier_instance: Optional[Notifier] = None

_NOTIFIERS = {
    "whatsapp": WhatsAppNotifier,
    "twilio_sms": TwilioSMSNotifier,
    "stub": StubNotifier,
}


def get_notifier() -> Notifier:
    """
    Get notifier instance based on NOTIFIER_PROVIDER.

    Raises:
        ValueError: Unknown provider, or provider missing required configuration
    """
    global _notifier_instance

    provider_type = settings.NOTIFIER_PROVIDER.lower()
    notifier_class = _NOTIFIERS.get(provider_type)
    if notifier_class is None:
        raise ValueError(
            f"Unknown notifier provider: {provider_type}. Must be one of: {', '.join(_NOTIFIERS)}"
        )

    if _notifier_instance is None or not isinstance(_notifier_instance, notifier_class):
        try:
            _notifier_instance = notifier_class()
        except ValueError as e:
            logger.error(f"[Recovery] Failed to initialize {provider_type} notifier: {e}")
            raise
        logger.info(f"[Recovery] Using {provider_type} notifier")
    return _notifier_instance


def reset_notifier() -> None:
    global _notifier_instance
    _notifier_instance = None
