"""
Phone-based password recovery.

Flow:
    request_challenge -> ChallengeStore.issue -> Notifier.send
    verify_and_reset  -> ChallengeStore.consume -> IdentityStore.set_password

A user proves possession of their registered phone number with a one-time
code, then is allowed exactly one password change.
"""
import asyncio
import hmac
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ...core.config import settings
from ...core.env import is_local_env, is_production_env
from ...utils.phone import canonicalize_phone, get_phone_last4, mask_phone
from .audit import AuditService
from .challenge_store import CHALLENGE_GONE, CODE_LENGTH, BoundIdentity, Challenge, ChallengeStore
from .errors import (
    AttemptsExceeded,
    ChallengeNotFoundOrExpired,
    CodeMismatch,
    Cooldown,
    IneligibleRole,
    InvalidCodeFormat,
    InvalidPhoneFormat,
    PasswordUpdateFailed,
    SecurityBindingViolation,
    UnregisteredIdentity,
    WeakPassword,
)
from .identity import IdentityStore
from .notifier import DispatchResult, Notifier

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(rf"^\d{{{CODE_LENGTH}}}$", re.ASCII)


@dataclass(frozen=True)
class ChallengeRequestResult:
    masked_phone: str
    delivered: bool
    provider: str
    # Only populated when the debug echo is enabled in a local environment
    debug_code: Optional[str] = None


def debug_echo_enabled() -> bool:
    return settings.RECOVERY_DEBUG_ECHO_CODE and is_local_env() and not is_production_env()


class RecoveryService:
    """
    Enforces recovery eligibility and bridges the challenge store to the
    identity store and the notifier.
    """

    def __init__(
        self,
        store: ChallengeStore,
        identities: IdentityStore,
        notifier: Notifier,
        eligible_role: Optional[str] = None,
        min_password_length: Optional[int] = None,
        echo_code: Optional[bool] = None,
    ):
        self.store = store
        self.identities = identities
        self.notifier = notifier
        self.eligible_role = settings.RECOVERY_ELIGIBLE_ROLE if eligible_role is None else eligible_role
        self.min_password_length = (
            settings.PASSWORD_MIN_LENGTH if min_password_length is None else min_password_length
        )
        self.echo_code = debug_echo_enabled() if echo_code is None else echo_code

    @staticmethod
    def _canonicalize(phone_raw: str) -> str:
        try:
            return canonicalize_phone(phone_raw)
        except ValueError:
            raise InvalidPhoneFormat()

    async def request_challenge(
        self,
        phone_raw: str,
        request_id: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> ChallengeRequestResult:
        """
        Issue a recovery code for a registered, eligible phone number and
        dispatch it.

        Delivery failure does not revoke the code: the result reports
        ``delivered=False`` and the code stays valid until it expires.

        Raises:
            InvalidPhoneFormat, UnregisteredIdentity, IneligibleRole
        """
        return await self._issue_and_send(phone_raw, resend=False, request_id=request_id, ip=ip)

    async def resend_challenge(
        self,
        phone_raw: str,
        request_id: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> ChallengeRequestResult:
        """
        Same as request_challenge, but refused while a code is still valid.

        Raises:
            Cooldown: carrying the remaining time in whole minutes (rounded up)
        """
        ctx = _ctx(request_id, ip)
        key = self._canonicalize_or_audit(phone_raw, ctx)

        remaining = self.store.cooldown_remaining(key)
        if remaining.total_seconds() > 0:
            minutes = math.ceil(remaining.total_seconds() / 60)
            AuditService.log_resend_cooldown(get_phone_last4(key), minutes, **ctx)
            raise Cooldown(minutes)

        return await self._issue_and_send(phone_raw, resend=True, request_id=request_id, ip=ip)

    def _canonicalize_or_audit(self, phone_raw: str, ctx: Dict[str, Any]) -> str:
        try:
            return self._canonicalize(phone_raw)
        except InvalidPhoneFormat as e:
            AuditService.log_request_rejected(None, e.code, **ctx)
            raise

    async def _issue_and_send(
        self,
        phone_raw: str,
        resend: bool,
        request_id: Optional[str],
        ip: Optional[str],
    ) -> ChallengeRequestResult:
        ctx = _ctx(request_id, ip)
        key = self._canonicalize_or_audit(phone_raw, ctx)
        phone_last4 = get_phone_last4(key)

        # Identity lookups are blocking database calls
        identity = await asyncio.to_thread(self.identities.find_by_phone, key)
        if identity is None:
            AuditService.log_request_rejected(phone_last4, UnregisteredIdentity.code, **ctx)
            raise UnregisteredIdentity()
        if not identity.has_phone:
            # Stale or blank phone on the record
            AuditService.log_request_rejected(phone_last4, UnregisteredIdentity.code, reason="blank_phone", **ctx)
            raise UnregisteredIdentity(
                "Your account does not have a registered phone number. Please contact admin."
            )
        if identity.role != self.eligible_role:
            AuditService.log_request_rejected(phone_last4, IneligibleRole.code, **ctx)
            raise IneligibleRole()

        challenge = self.store.issue(
            key, BoundIdentity(identity_id=identity.id, role=identity.role, phone=identity.phone)
        )
        logger.info(
            f"[Recovery] Challenge issued for ...{phone_last4} "
            f"(expires {challenge.expires_at.isoformat()}, resend={resend})"
        )

        # Never under a store lock
        dispatch = await self._dispatch(key, challenge)
        if not dispatch.success:
            logger.warning(
                f"[Recovery] Code for ...{phone_last4} generated but delivery via {dispatch.provider} failed: "
                f"{dispatch.error}"
            )

        AuditService.log_challenge_issued(phone_last4, dispatch.success, dispatch.provider, resend=resend, **ctx)

        return ChallengeRequestResult(
            masked_phone=mask_phone(key),
            delivered=dispatch.success,
            provider=dispatch.provider,
            debug_code=challenge.code if self.echo_code else None,
        )

    async def _dispatch(self, key: str, challenge: Challenge) -> DispatchResult:
        try:
            return await self.notifier.send(key, challenge.code)
        except Exception as e:
            logger.error(
                f"[Recovery] Notifier {self.notifier.name} raised for ...{get_phone_last4(key)}: {e}",
                exc_info=True,
            )
            return DispatchResult(success=False, provider=self.notifier.name, error=str(e))

    def verify_and_reset(
        self,
        phone_raw: str,
        code: str,
        new_password: str,
        request_id: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> None:
        """
        Verify the code for phone_raw and set the new password.

        Raises:
            InvalidPhoneFormat, InvalidCodeFormat, ChallengeNotFoundOrExpired,
            CodeMismatch, AttemptsExceeded, SecurityBindingViolation,
            WeakPassword, PasswordUpdateFailed
        """
        ctx = _ctx(request_id, ip)

        try:
            key = self._canonicalize(phone_raw)
        except InvalidPhoneFormat as e:
            AuditService.log_verify_fail(None, e.code, **ctx)
            raise
        phone_last4 = get_phone_last4(key)

        if not isinstance(code, str) or not CODE_PATTERN.fullmatch(code):
            AuditService.log_verify_fail(phone_last4, InvalidCodeFormat.code, **ctx)
            raise InvalidCodeFormat()

        challenge = self.store.peek(key)
        if challenge is None:
            AuditService.log_verify_fail(phone_last4, ChallengeNotFoundOrExpired.code, **ctx)
            raise ChallengeNotFoundOrExpired()

        if not hmac.compare_digest(code, challenge.code):
            outcome = self.store.record_failed_attempt(key, challenge.challenge_id)
            if outcome is CHALLENGE_GONE:
                AuditService.log_verify_fail(phone_last4, AttemptsExceeded.code, **ctx)
                raise AttemptsExceeded()
            if outcome is None:
                # Consumed, exhausted or replaced since the peek
                AuditService.log_verify_fail(phone_last4, ChallengeNotFoundOrExpired.code, **ctx)
                raise ChallengeNotFoundOrExpired()
            AuditService.log_verify_fail(phone_last4, CodeMismatch.code, remaining_attempts=outcome, **ctx)
            raise CodeMismatch(outcome)

        self._check_binding(key, challenge, ctx)

        if len(new_password) < self.min_password_length:
            AuditService.log_verify_fail(phone_last4, WeakPassword.code, **ctx)
            raise WeakPassword(self.min_password_length)

        # Consume before committing so two correct submissions cannot both win
        consumed = self.store.consume(key, challenge.challenge_id)
        if consumed is None:
            AuditService.log_verify_fail(phone_last4, ChallengeNotFoundOrExpired.code, **ctx)
            raise ChallengeNotFoundOrExpired()

        try:
            self.identities.set_password(consumed.bound_identity.identity_id, new_password)
        except Exception as e:
            reinstated = self.store.reinstate(consumed)
            logger.error(
                f"[Recovery] Password update failed for ...{phone_last4} (challenge reinstated: {reinstated}): {e}",
                exc_info=True,
            )
            raise PasswordUpdateFailed()

        AuditService.log_password_reset(phone_last4, **ctx)
        logger.info(f"[Recovery] Password reset successful for ...{phone_last4}")

    def _check_binding(self, key: str, challenge: Challenge, ctx: Dict[str, Any]) -> None:
        """Re-validate the identity captured at issuance against its current state."""
        bound = challenge.bound_identity
        current = self.identities.get(bound.identity_id)

        reason = None
        if current is None:
            reason = "identity_missing"
        elif current.phone != bound.phone or current.phone != key:
            reason = "phone_changed"
        elif current.role != self.eligible_role:
            reason = "role_changed"

        if reason is not None:
            self.store.delete(key, challenge.challenge_id)
            phone_last4 = get_phone_last4(key)
            logger.error(f"[Recovery] Security alert: binding check failed for ...{phone_last4} ({reason})")
            AuditService.log_security_alert(phone_last4, reason, **ctx)
            raise SecurityBindingViolation()


def _ctx(request_id: Optional[str], ip: Optional[str]) -> Dict[str, Any]:
    return {"request_id": request_id, "ip": ip}
