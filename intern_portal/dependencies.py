"""
FastAPI dependencies for the recovery endpoints
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from .db import get_db
from .services.recovery import (
    ChallengeStore,
    Notifier,
    RateLimitService,
    RecoveryService,
    SqlIdentityStore,
    get_challenge_store,
    get_notifier,
    get_rate_limit_service,
)


def challenge_store_dependency() -> ChallengeStore:
    return get_challenge_store()


def notifier_dependency() -> Notifier:
    return get_notifier()


def rate_limiter_dependency() -> RateLimitService:
    return get_rate_limit_service()


def get_recovery_service(
    db: Session = Depends(get_db),
    store: ChallengeStore = Depends(challenge_store_dependency),
    notifier: Notifier = Depends(notifier_dependency),
) -> RecoveryService:
    """Per-request service; the challenge store and notifier are shared."""
    return RecoveryService(store=store, identities=SqlIdentityStore(db), notifier=notifier)
