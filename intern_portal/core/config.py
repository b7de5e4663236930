from pydantic import BaseModel
import os
from functools import lru_cache


class Settings(BaseModel):
    ENV: str = os.getenv("ENV", "dev")  # dev, staging, prod
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./intern_portal.db")
    REDIS_URL: str = os.getenv("REDIS_URL", "")

    # Password recovery
    RECOVERY_OTP_TTL_MINUTES: int = int(os.getenv("RECOVERY_OTP_TTL_MINUTES", "10"))
    RECOVERY_MAX_ATTEMPTS: int = int(os.getenv("RECOVERY_MAX_ATTEMPTS", "3"))
    RECOVERY_ELIGIBLE_ROLE: str = os.getenv("RECOVERY_ELIGIBLE_ROLE", "intern")  # admins use email reset
    PASSWORD_MIN_LENGTH: int = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))
    # Echo the raw code in API responses. Honoured only when ENV is local/dev.
    RECOVERY_DEBUG_ECHO_CODE: bool = os.getenv("RECOVERY_DEBUG_ECHO_CODE", "false").lower() == "true"
    CHALLENGE_PURGE_INTERVAL_SECONDS: int = int(os.getenv("CHALLENGE_PURGE_INTERVAL_SECONDS", "60"))

    # Rate limits per client IP
    RECOVERY_START_LIMIT_IP: int = int(os.getenv("RECOVERY_START_LIMIT_IP", "10"))
    RECOVERY_VERIFY_LIMIT_IP: int = int(os.getenv("RECOVERY_VERIFY_LIMIT_IP", "20"))
    RECOVERY_RATE_WINDOW_SECONDS: int = int(os.getenv("RECOVERY_RATE_WINDOW_SECONDS", "600"))

    # Notifier: whatsapp, twilio_sms, stub
    NOTIFIER_PROVIDER: str = os.getenv("NOTIFIER_PROVIDER", "stub")

    # WhatsApp Cloud API (https://developers.facebook.com/apps/)
    WHATSAPP_PHONE_NUMBER_ID: str = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
    WHATSAPP_ACCESS_TOKEN: str = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
    WHATSAPP_API_VERSION: str = os.getenv("WHATSAPP_API_VERSION", "v18.0")
    WHATSAPP_API_URL: str = os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com")
    WHATSAPP_OTP_TEMPLATE: str = os.getenv("WHATSAPP_OTP_TEMPLATE", "")  # empty = plain text message
    WHATSAPP_TEMPLATE_LANGUAGE: str = os.getenv("WHATSAPP_TEMPLATE_LANGUAGE", "en_US")
    WHATSAPP_TIMEOUT_SECONDS: float = float(os.getenv("WHATSAPP_TIMEOUT_SECONDS", "10"))

    # Twilio SMS
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    OTP_FROM_NUMBER: str = os.getenv("OTP_FROM_NUMBER", "")

    APP_NAME: str = os.getenv("APP_NAME", "Intern Portal")

    @property
    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
