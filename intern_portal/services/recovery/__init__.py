"""
Phone-based password recovery: challenge store, notifiers, orchestration
"""
from .challenge_store import (
    CHALLENGE_GONE,
    BoundIdentity,
    Challenge,
    ChallengeStore,
    get_challenge_store,
)
from .errors import RecoveryError
from .identity import Identity, IdentityStore, SqlIdentityStore
from .notifier import DispatchResult, Notifier
from .notifier_factory import get_notifier
from .rate_limit import RateLimitService, get_rate_limit_service
from .service import ChallengeRequestResult, RecoveryService

__all__ = [
    "CHALLENGE_GONE",
    "BoundIdentity",
    "Challenge",
    "ChallengeStore",
    "get_challenge_store",
    "RecoveryError",
    "Identity",
    "IdentityStore",
    "SqlIdentityStore",
    "DispatchResult",
    "Notifier",
    "get_notifier",
    "RateLimitService",
    "get_rate_limit_service",
    "ChallengeRequestResult",
    "RecoveryService",
]
