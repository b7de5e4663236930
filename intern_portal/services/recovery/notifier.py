"""
Abstract notifier interface for delivering recovery codes
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a delivery attempt"""

    success: bool
    provider: str
    error: Optional[str] = None
    message_id: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for out-of-band code delivery channels"""

    name = "notifier"

    @abstractmethod
    async def send(self, phone: str, code: str) -> DispatchResult:
        """
        Deliver a recovery code.

        Args:
            phone: Canonical phone number (digits only)
            code: One-time code to deliver

        Returns:
            DispatchResult; delivery problems are reported, not raised
        """
        pass
