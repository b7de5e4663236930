"""
Identity collaborator used by the recovery flow.

The recovery core only needs lookup by phone, lookup by id, and a password
setter. Hashing belongs to the identity store, not to the caller.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...core.security import hash_password
from ...models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: int
    role: str
    phone: Optional[str]

    @property
    def has_phone(self) -> bool:
        return bool(self.phone and self.phone.strip())


class IdentityStore(ABC):
    @abstractmethod
    def find_by_phone(self, phone: str) -> Optional[Identity]:
        """Identity registered with exactly this phone number, if any"""

    @abstractmethod
    def get(self, identity_id: int) -> Optional[Identity]:
        """Current state of an identity, if it still exists"""

    @abstractmethod
    def set_password(self, identity_id: int, new_password: str) -> None:
        """
        Replace the identity's password.

        Raises:
            LookupError: If the identity does not exist
        """


def _to_identity(user: User) -> Identity:
    return Identity(id=user.id, role=user.role, phone=user.phone)


class SqlIdentityStore(IdentityStore):
    """IdentityStore backed by the ``users`` table"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_phone(self, phone: str) -> Optional[Identity]:
        user = self.db.query(User).filter(User.phone == phone).first()
        return _to_identity(user) if user else None

    def get(self, identity_id: int) -> Optional[Identity]:
        user = self.db.get(User, identity_id)
        return _to_identity(user) if user else None

    def set_password(self, identity_id: int, new_password: str) -> None:
        user = self.db.get(User, identity_id)
        if user is None:
            raise LookupError(f"User {identity_id} not found")
        user.password_hash = hash_password(new_password)
        user.updated_at = datetime.utcnow()
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
