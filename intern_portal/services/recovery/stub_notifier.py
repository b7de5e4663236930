"""
Stub notifier for dev/staging environments
"""
import logging

from ...core.env import get_env_name, is_local_env, is_production_env
from ...utils.phone import get_phone_last4
from .notifier import DispatchResult, Notifier

logger = logging.getLogger(__name__)


class StubNotifier(Notifier):
    """
    Stub notifier for development.

    Delivers nothing and always reports success. Logs the code only in
    local environments (local/dev), the same gate as the debug echo.
    """

    name = "stub"

    def __init__(self):
        env = get_env_name()
        if is_production_env():
            logger.warning("[Recovery][Stub] WARNING: Stub notifier enabled in production! Codes are not delivered.")
        else:
            logger.info(f"[Recovery][Stub] Stub notifier enabled for environment: {env}")

    async def send(self, phone: str, code: str) -> DispatchResult:
        if is_local_env():
            logger.info(f"[Recovery][Stub] Code for ...{get_phone_last4(phone)}: {code}")
        else:
            logger.info(f"[Recovery][Stub] Code generated for ...{get_phone_last4(phone)} (not delivered)")
        return DispatchResult(success=True, provider=self.name)
