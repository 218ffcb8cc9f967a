from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class BaseNotificationChannel(ABC):
    """A delivery backend. `deliver` reports expected failures by returning False."""

    channel_type: str = ""

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    async def deliver(
        self, message: str, recipient: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Hand a message to the backend.

        Returns:
            bool: True if accepted for delivery, False otherwise
        """
        pass
