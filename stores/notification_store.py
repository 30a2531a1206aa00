from datetime import datetime
from typing import List, Optional, Sequence

from core.errors import ServiceError
from models.message import BatchResult
from models.notification import Notification, NotificationPriority
from models.user import UserRole
from services.notification_service import NotificationService, is_unread
from stores.base import ERROR, Notifier, Store, remove_by_id, replace_by_id


class NotificationStore(Store):
    def __init__(self, notifications: NotificationService, notifier: Optional[Notifier] = None) -> None:
        super().__init__(notifier)
        self.service = notifications
        self.notifications: List[Notification] = []
        self.user_id: Optional[str] = None

    @property
    def unread_count(self) -> int:
        """Unread among the cached notifications for the user they were fetched for."""
        if self.user_id is None:
            return 0
        return sum(1 for n in self.notifications if is_unread(n, self.user_id))

    async def fetch_notifications(self, user_id: str, limit: Optional[int] = None) -> None:
        self.user_id = user_id
        async with self.loading():
            try:
                self.notifications = await self.service.user_notifications(user_id, limit)
            except ServiceError as e:
                self.fail(e, {401: "Session expired. Sign in again."}, "Could not load notifications")

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        try:
            notification = await self.service.mark_read(notification_id, user_id)
        except ServiceError as e:
            self.fail(e, {404: "Notification not found"}, "Could not update notification")
            return False

        self.notifications = replace_by_id(self.notifications, notification)
        return True

    async def mark_all_read(self, user_id: str) -> BatchResult:
        result = await self.service.mark_all_read(user_id)
        if result.failed:
            self.notify(ERROR, f"{result.failed} of {result.total} notifications could not be marked as read")
        else:
            self.succeed("All notifications marked as read")
        await self.fetch_notifications(user_id)
        return result

    async def create(
        self,
        title: str,
        content: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        target_users: Optional[Sequence[str]] = None,
        expires_at: Optional[datetime] = None,
    ) -> Optional[Notification]:
        try:
            notification = await self.service.create(title, content, priority, target_users, expires_at)
        except ServiceError as e:
            self.fail(e, {400: "Title and content are required"}, "Could not create notification")
            return None

        if self.user_id and notification.is_visible_to(self.user_id):
            self.notifications = [notification] + self.notifications
        self.succeed("Notification sent")
        return notification

    async def announce(
        self,
        title: str,
        content: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        target_roles: Optional[Sequence[UserRole]] = None,
    ) -> Optional[Notification]:
        try:
            notification = await self.service.send_announcement(title, content, priority, target_roles)
        except ServiceError as e:
            self.fail(e, {400: "Title and content are required"}, "Could not send announcement")
            return None

        if self.user_id and notification.is_visible_to(self.user_id):
            self.notifications = [notification] + self.notifications
        self.succeed("Announcement sent")
        return notification

    async def delete(self, notification_id: str) -> bool:
        try:
            await self.service.delete(notification_id)
        except ServiceError as e:
            self.fail(e, {404: "Notification not found"}, "Could not delete notification")
            return False

        self.notifications = remove_by_id(self.notifications, notification_id)
        self.succeed("Notification deleted")
        return True
