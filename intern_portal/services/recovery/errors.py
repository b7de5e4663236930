"""
Error taxonomy for phone-based password recovery.

Every failure of the recovery flow is one of these kinds. Messages are safe
to return to the caller: they never contain the code or an identity id.
"""
from typing import Any, Dict, Optional


class RecoveryError(Exception):
    """Base exception for password recovery failures"""

    code = "recovery_error"
    status_code = 400
    default_message = "Password recovery failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def extra(self) -> Dict[str, Any]:
        """Additional envelope fields for this error."""
        return {}


class InvalidPhoneFormat(RecoveryError):
    code = "invalid_phone_format"
    default_message = "Invalid phone number format. Use: country code + number (e.g., 919876543210)"


class InvalidCodeFormat(RecoveryError):
    code = "invalid_code_format"
    default_message = "Invalid OTP format. The code must be exactly 6 digits."


class UnregisteredIdentity(RecoveryError):
    code = "unregistered_identity"
    status_code = 404
    default_message = "No account found with this phone number. Please contact admin."


class IneligibleRole(RecoveryError):
    code = "ineligible_role"
    status_code = 403
    default_message = "This feature is only available for interns. Admins should use email reset."


class ChallengeNotFoundOrExpired(RecoveryError):
    code = "challenge_not_found"
    default_message = "OTP expired or not found. Please request a new one."


class CodeMismatch(RecoveryError):
    """Wrong code; retry permitted while attempts remain"""

    code = "code_mismatch"

    def __init__(self, remaining_attempts: int):
        self.remaining_attempts = remaining_attempts
        noun = "attempt" if remaining_attempts == 1 else "attempts"
        super().__init__(f"Invalid OTP. {remaining_attempts} {noun} remaining.")

    def extra(self) -> Dict[str, Any]:
        return {"remainingAttempts": self.remaining_attempts}


class AttemptsExceeded(RecoveryError):
    code = "attempts_exceeded"
    default_message = "Maximum OTP verification attempts exceeded. Please request a new OTP."


class SecurityBindingViolation(RecoveryError):
    code = "security_binding_violation"
    status_code = 403
    default_message = "Security verification failed. Please contact admin."


class WeakPassword(RecoveryError):
    code = "weak_password"

    def __init__(self, min_length: int):
        self.min_length = min_length
        super().__init__(f"Password must be at least {min_length} characters long")


class Cooldown(RecoveryError):
    """A code is still valid; resend refused"""

    code = "cooldown"
    status_code = 429

    def __init__(self, remaining_minutes: int):
        self.remaining_minutes = remaining_minutes
        noun = "minute" if remaining_minutes == 1 else "minutes"
        super().__init__(f"Please wait {remaining_minutes} {noun} before requesting a new OTP")

    def extra(self) -> Dict[str, Any]:
        return {"remainingMinutes": self.remaining_minutes}


class RateLimited(RecoveryError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many requests. Please try again later."


class PasswordUpdateFailed(RecoveryError):
    code = "password_update_failed"
    status_code = 500
    default_message = "Unable to update password right now. Please try again."
