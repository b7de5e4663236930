"""
Structured audit logging service for password recovery events
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


class AuditService:
    """
    Structured audit logging for the recovery flow.

    Never logs codes, identity ids or full phone numbers.
    """

    @staticmethod
    def _log_audit_event(
        event_type: str,
        request_id: Optional[str] = None,
        phone_last4: Optional[str] = None,
        ip: Optional[str] = None,
        outcome: Optional[str] = None,
        error: Optional[str] = None,
        level: int = logging.INFO,
        **kwargs,
    ):
        """
        Log structured audit event.

        Args:
            event_type: Event type (e.g., 'recovery_requested')
            request_id: Request ID from middleware
            phone_last4: Last 4 digits of phone number
            ip: Client IP address
            outcome: Outcome (success/fail/rate_limited/blocked)
            error: Error code (if any)
            level: Log level for the audit line
            **kwargs: Additional event-specific fields
        """
        audit_data = {
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "outcome": outcome,
        }

        if request_id:
            audit_data["request_id"] = request_id
        if phone_last4:
            audit_data["phone_last4"] = phone_last4
        if ip:
            audit_data["ip"] = ip
        if error:
            audit_data["error"] = error

        audit_data.update(kwargs)

        logger.log(level, f"[Recovery][Audit] {json.dumps(audit_data)}")

    @staticmethod
    def log_challenge_issued(phone_last4: str, delivered: bool, provider: str, resend: bool = False, **ctx):
        AuditService._log_audit_event(
            "recovery_challenge_issued",
            phone_last4=phone_last4,
            outcome="success" if delivered else "undelivered",
            provider=provider,
            resend=resend,
            **ctx,
        )

    @staticmethod
    def log_request_rejected(phone_last4: Optional[str], error: str, **ctx):
        AuditService._log_audit_event(
            "recovery_request_rejected",
            phone_last4=phone_last4,
            outcome="fail",
            error=error,
            **ctx,
        )

    @staticmethod
    def log_resend_cooldown(phone_last4: str, remaining_minutes: int, **ctx):
        AuditService._log_audit_event(
            "recovery_resend_cooldown",
            phone_last4=phone_last4,
            outcome="blocked",
            remaining_minutes=remaining_minutes,
            **ctx,
        )

    @staticmethod
    def log_verify_fail(phone_last4: Optional[str], error: str, remaining_attempts: Optional[int] = None, **ctx):
        extra = {}
        if remaining_attempts is not None:
            extra["remaining_attempts"] = remaining_attempts
        AuditService._log_audit_event(
            "recovery_verify_fail",
            phone_last4=phone_last4,
            outcome="fail",
            error=error,
            **extra,
            **ctx,
        )

    @staticmethod
    def log_security_alert(phone_last4: str, reason: str, **ctx):
        AuditService._log_audit_event(
            "recovery_security_alert",
            phone_last4=phone_last4,
            outcome="blocked",
            error="security_binding_violation",
            reason=reason,
            level=logging.ERROR,
            **ctx,
        )

    @staticmethod
    def log_password_reset(phone_last4: str, **ctx):
        AuditService._log_audit_event(
            "recovery_password_reset",
            phone_last4=phone_last4,
            outcome="success",
            **ctx,
        )

    @staticmethod
    def log_rate_limited(action: str, reason: str, **ctx):
        AuditService._log_audit_event(
            "recovery_rate_limited",
            outcome="rate_limited",
            action=action,
            reason=reason,
            level=logging.WARNING,
            **ctx,
        )
