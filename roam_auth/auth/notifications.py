"""
User Notifications

Carries user-visible confirmation signals ("toasts") from the auth contexts to
whatever presentation layer registered for them.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Deque, List

from roam_auth.common.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    title: str
    description: str = ""
    variant: str = "default"
    timestamp: datetime = field(default_factory=datetime.now)


NotificationListener = Callable[[Notification], Awaitable[None]]


class NotificationCenter:
    """
    Fan-out of notifications to async listeners.

    Attributes:
        listeners: Registered async callbacks, called in registration order
        recent: The most recent notifications, oldest first
    """

    def __init__(self, history_size: int = 50):
        self.listeners: List[NotificationListener] = []
        self.recent: Deque[Notification] = deque(maxlen=history_size)

    def register_listener(self, callback: NotificationListener) -> None:
        self.listeners.append(callback)
        logger.debug(f"Registered notification listener ({len(self.listeners)} total)")

    def unregister_listener(self, callback: NotificationListener) -> None:
        if callback in self.listeners:
            self.listeners.remove(callback)

    async def notify(self, title: str, description: str = "", variant: str = "default") -> Notification:
        """
        Publish a notification to all registered listeners.

        Args:
            title: Short headline
            description: Body text
            variant: Presentation hint ("default" or "destructive")

        Returns:
            The published notification
        """
        notification = Notification(title=title, description=description, variant=variant)
        self.recent.append(notification)

        for callback in list(self.listeners):
            try:
                await callback(notification)
            except Exception as e:
                logger.error(f"Error in notification listener callback: {e}")

        return notification
