"""
In-process store for password recovery challenges.

Holds at most one live challenge per canonical phone number. Expiry is
lazy: every read compares against ``expires_at``, and ``purge_expired``
only reclaims memory. All mutations run under a single lock, so attempt
counting and consumption are indivisible per key.

The store is process-local. Running more than one API instance requires a
shared TTL-capable store behind the same interface.
"""
import logging
import secrets
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
DEFAULT_TTL = timedelta(minutes=10)
DEFAULT_MAX_ATTEMPTS = 3


class _ChallengeGone:
    def __repr__(self):
        return "CHALLENGE_GONE"


# Returned by record_failed_attempt when the last allowed attempt was used up
CHALLENGE_GONE = _ChallengeGone()


@dataclass(frozen=True)
class BoundIdentity:
    """Snapshot of the identity a challenge authorizes, taken at issuance."""

    identity_id: int
    role: str
    phone: str


@dataclass(frozen=True)
class Challenge:
    subject_key: str
    challenge_id: str
    code: str
    bound_identity: BoundIdentity
    issued_at: datetime
    expires_at: datetime
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def remaining_attempts(self) -> int:
        return max(self.max_attempts - self.attempts, 0)

    def __repr__(self):
        # Keep the code out of logs and tracebacks
        return (
            f"Challenge(subject_key=...{self.subject_key[-4:]}, challenge_id={self.challenge_id}, "
            f"attempts={self.attempts}/{self.max_attempts}, expires_at={self.expires_at.isoformat()})"
        )


def generate_code(length: int = CODE_LENGTH) -> str:
    """Uniform random numeric code, leading zeros preserved"""
    return str(secrets.randbelow(10**length)).zfill(length)


class ChallengeStore:
    """
    Authoritative state for in-flight recovery challenges, keyed by
    canonical phone number.

    Methods return immutable ``Challenge`` snapshots; callers never hold a
    reference to stored state.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Optional[Callable[[], datetime]] = None,
        code_generator: Callable[[], str] = generate_code,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.ttl = ttl
        self.max_attempts = max_attempts
        self._clock = clock
        self._generate_code = code_generator
        self._challenges: Dict[str, Challenge] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(timezone.utc)

    def _live(self, key: str, now: datetime, challenge_id: Optional[str] = None) -> Optional[Challenge]:
        """Live entry for key. Caller must hold the lock."""
        challenge = self._challenges.get(key)
        if challenge is None:
            return None
        if challenge.is_expired(now):
            del self._challenges[key]
            return None
        if challenge_id is not None and challenge.challenge_id != challenge_id:
            return None
        return challenge

    def issue(self, key: str, bound_identity: BoundIdentity) -> Challenge:
        """
        Create a fresh challenge for key, replacing any existing one.

        Args:
            key: Canonical phone number
            bound_identity: Identity snapshot the challenge authorizes

        Returns:
            The stored challenge
        """
        now = self._now()
        challenge = Challenge(
            subject_key=key,
            challenge_id=uuid.uuid4().hex,
            code=self._generate_code(),
            bound_identity=bound_identity,
            issued_at=now,
            expires_at=now + self.ttl,
            attempts=0,
            max_attempts=self.max_attempts,
        )
        with self._lock:
            replaced = key in self._challenges
            self._challenges[key] = challenge
        if replaced:
            logger.debug(f"[Recovery][Store] Replaced challenge for ...{key[-4:]}")
        return challenge

    def peek(self, key: str) -> Optional[Challenge]:
        """Read-only lookup. Expired challenges are reported as absent."""
        now = self._now()
        with self._lock:
            challenge = self._challenges.get(key)
        if challenge is None or challenge.is_expired(now):
            return None
        return challenge

    def record_failed_attempt(
        self, key: str, challenge_id: Optional[str] = None
    ) -> Union[int, _ChallengeGone, None]:
        """
        Charge one failed verification against the live challenge.

        Args:
            key: Canonical phone number
            challenge_id: If given, only this exact issuance is charged

        Returns:
            Remaining attempts, CHALLENGE_GONE if the limit was reached (the
            challenge is deleted), or None if there is no matching live
            challenge
        """
        now = self._now()
        with self._lock:
            challenge = self._live(key, now, challenge_id)
            if challenge is None:
                return None
            attempts = challenge.attempts + 1
            if attempts >= challenge.max_attempts:
                del self._challenges[key]
                return CHALLENGE_GONE
            self._challenges[key] = replace(challenge, attempts=attempts)
            return challenge.max_attempts - attempts

    def consume(self, key: str, challenge_id: Optional[str] = None) -> Optional[Challenge]:
        """
        Atomically remove and return the live challenge.

        At most one caller ever receives a given challenge.
        """
        now = self._now()
        with self._lock:
            challenge = self._live(key, now, challenge_id)
            if challenge is None:
                return None
            del self._challenges[key]
            return challenge

    def delete(self, key: str, challenge_id: Optional[str] = None) -> bool:
        """Remove the challenge for key. Returns True if one was removed."""
        with self._lock:
            challenge = self._challenges.get(key)
            if challenge is None:
                return False
            if challenge_id is not None and challenge.challenge_id != challenge_id:
                return False
            del self._challenges[key]
            return True

    def reinstate(self, challenge: Challenge) -> bool:
        """
        Put a consumed challenge back, unless the key has been reissued in
        the meantime or the challenge has expired.
        """
        now = self._now()
        with self._lock:
            if challenge.is_expired(now) or self._live(challenge.subject_key, now) is not None:
                return False
            self._challenges[challenge.subject_key] = challenge
            return True

    def cooldown_remaining(self, key: str) -> timedelta:
        """Time until the live challenge expires, or zero if there is none."""
        now = self._now()
        with self._lock:
            challenge = self._challenges.get(key)
        if challenge is None or challenge.is_expired(now):
            return timedelta(0)
        return challenge.expires_at - now

    def purge_expired(self) -> int:
        """Physically drop expired entries. Returns the number removed."""
        now = self._now()
        with self._lock:
            expired = [key for key, c in self._challenges.items() if c.is_expired(now)]
            for key in expired:
                del self._challenges[key]
        if expired:
            logger.debug(f"[Recovery][Store] Purged {len(expired)} expired challenge(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)


_challenge_store: Optional[ChallengeStore] = None


def get_challenge_store() -> ChallengeStore:
    """Process-wide challenge store singleton"""
    global _challenge_store
    if _challenge_store is None:
        from ...core.config import settings

        _challenge_store = ChallengeStore(
            ttl=timedelta(minutes=settings.RECOVERY_OTP_TTL_MINUTES),
            max_attempts=settings.RECOVERY_MAX_ATTEMPTS,
        )
    return _challenge_store
