"""
Notification service.

A notification either targets a list of user ids or, when that list is
absent, everybody. Read state is tracked per recipient in the readBy map, so
one user reading a notification never changes what another user sees.
"""

import asyncio
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from core.errors import InvalidInput, map_platform_error
from core.platform import Platform, Query
from models.expense import ExpenseStatus
from models.message import BatchResult
from models.notification import Notification, NotificationCreate, NotificationPriority
from models.user import UserRole
from utils.datetime_helpers import utc_now

logger = logging.getLogger(__name__)

ORDER_FIELD = "date"

# Targeted notifications are filtered after the query, so fetch this many
# times the requested limit to make a short page less likely. Not a guarantee.
OVERFETCH_FACTOR = 2


def is_unread(notification: Notification, user_id: str) -> bool:
    """Unread for user_id unless the read map has a truthy entry for them."""
    return not notification.is_read_by(user_id)


class NotificationService:
    def __init__(self, platform: Platform) -> None:
        self.platform = platform
        self.collection = platform.collections.notifications

    async def _query(self, query: Query) -> List[Notification]:
        query.order_desc = ORDER_FIELD
        documents = await self.platform.documents.list(self.collection, query)
        return [Notification.from_document(d) for d in documents]

    async def create(
        self,
        title: str,
        content: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        target_users: Optional[Sequence[str]] = None,
        expires_at: Optional[datetime] = None,
    ) -> Notification:
        try:
            form = NotificationCreate(
                title=title,
                content=content,
                priority=priority,
                target_users=list(target_users) if target_users is not None else None,
                expires_at=expires_at,
            )
        except ValidationError as e:
            raise InvalidInput(f"Invalid notification: {e.error_count()} invalid field(s)", cause=e)
        data = {
            "title": form.title,
            "content": form.content,
            "priority": form.priority.value,
            "targetUsers": json.dumps(form.target_users) if form.target_users is not None else None,
            "readBy": {},
            "date": utc_now(),
            "expiresAt": form.expires_at,
        }
        try:
            document = await self.platform.documents.create(self.collection, None, data)
        except Exception as e:
            logger.error(f"Create notification error: {e}")
            raise map_platform_error(e)

        audience = "everyone" if form.target_users is None else f"{len(form.target_users)} user(s)"
        logger.info(f"Notification {document.id} created for {audience}")
        return Notification.from_document(document)

    async def user_notifications(self, user_id: str, limit: Optional[int] = None) -> List[Notification]:
        """
        Global notifications plus the ones targeting user_id, newest first.

        "Targets contains user" can't be queried, so a page of
        OVERFETCH_FACTOR * limit notifications is fetched and filtered here.
        """
        limit = limit or None
        page_size = limit * OVERFETCH_FACTOR if limit else None
        try:
            global_notifications, page = await asyncio.gather(
                self._query(Query(is_null=["targetUsers"], limit=limit)),
                self._query(Query(limit=page_size)),
            )
        except Exception as e:
            logger.error(f"Get user notifications error for {user_id}: {e}")
            raise map_platform_error(e)

        targeted = [n for n in page if not n.is_global and user_id in n.target_users]

        unique: Dict[str, Notification] = {}
        for notification in global_notifications + targeted:
            unique[notification.id] = notification
        notifications = sorted(unique.values(), key=lambda n: n.date, reverse=True)
        return notifications[:limit] if limit else notifications

    def is_unread(self, notification: Notification, user_id: str) -> bool:
        return is_unread(notification, user_id)

    async def unread_count(self, user_id: str) -> int:
        try:
            notifications = await self.user_notifications(user_id)
        except Exception as e:
            logger.error(f"Get unread notifications count error for {user_id}: {e}")
            return 0
        return sum(1 for n in notifications if is_unread(n, user_id))

    async def mark_read(self, notification_id: str, user_id: str) -> Notification:
        """
        Record that user_id has read the notification.

        Only the user's own readBy entry is written, so concurrent readers
        don't overwrite each other. Legacy documents keeping readBy as a JSON
        string are converted to a map in the same write.
        """
        documents = self.platform.documents
        try:
            document = await documents.get(self.collection, notification_id)
            stored = document.data.get("readBy")
            if isinstance(stored, dict):
                update = {f"readBy.{user_id}": True}
            else:
                read_by = Notification.from_document(document).read_by
                read_by[user_id] = True
                update = {"readBy": read_by}
            document = await documents.update(self.collection, notification_id, update)
        except Exception as e:
            logger.error(f"Mark notification as read error for {notification_id}: {e}")
            raise map_platform_error(e)
        return Notification.from_document(document)

    async def mark_all_read(self, user_id: str) -> BatchResult:
        """Mark every notification the user can see as read.

        Notifications already read count as successful without a write.
        """
        notifications = await self.user_notifications(user_id)

        async def mark(notification: Notification):
            if is_unread(notification, user_id):
                return await self.mark_read(notification.id, user_id)
            return notification

        results = await asyncio.gather(*(mark(n) for n in notifications), return_exceptions=True)
        successful = sum(1 for r in results if not isinstance(r, BaseException))
        if successful < len(notifications):
            logger.warning(f"Marked {successful}/{len(notifications)} notifications as read for {user_id}")
        return BatchResult(successful=successful, total=len(notifications))

    async def by_priority(
        self,
        priority: NotificationPriority,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Notification]:
        query = Query(equals={"priority": NotificationPriority(priority).value}, limit=limit or None)
        try:
            notifications = await self._query(query)
        except Exception as e:
            logger.error(f"Get notifications by priority error: {e}")
            raise map_platform_error(e)

        if user_id:
            notifications = [n for n in notifications if n.is_visible_to(user_id)]
        return notifications

    async def list_all(self, limit: Optional[int] = None) -> List[Notification]:
        try:
            return await self._query(Query(limit=limit or None))
        except Exception as e:
            logger.error(f"Get all notifications error: {e}")
            raise map_platform_error(e)

    async def delete(self, notification_id: str) -> bool:
        try:
            await self.platform.documents.delete(self.collection, notification_id)
        except Exception as e:
            logger.error(f"Delete notification error for {notification_id}: {e}")
            raise map_platform_error(e)
        return True

    # --- Templates ---

    async def send_expense_status_notification(
        self,
        user_id: str,
        expense_id: str,
        status: ExpenseStatus,
        amount: Decimal,
        category: str,
        rejection_reason: Optional[str] = None,
    ) -> Notification:
        status = ExpenseStatus(status)
        category = getattr(category, "value", category)
        if status == ExpenseStatus.APPROVED:
            title = "Expense Approved"
            content = f"Your {category} expense of €{amount} was approved."
        else:
            title = "Expense Rejected"
            content = f"Your {category} expense of €{amount} was rejected."
            if rejection_reason:
                content += f" Reason: {rejection_reason}"

        logger.info(f"Notifying {user_id} that expense {expense_id} was {status.value}")
        return await self.create(
            title,
            content,
            priority=NotificationPriority.HIGH if status == ExpenseStatus.REJECTED else NotificationPriority.MEDIUM,
            target_users=[user_id],
        )

    async def send_announcement(
        self,
        title: str,
        content: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        target_roles: Optional[Sequence[UserRole]] = None,
    ) -> Notification:
        """Announce to everybody, or only to the users holding one of target_roles."""
        if not target_roles:
            return await self.create(title, content, priority=priority)

        users = self.platform.collections.users
        try:
            batches = await asyncio.gather(
                *(
                    self.platform.documents.list(users, Query(equals={"role": UserRole(role).value}))
                    for role in target_roles
                )
            )
        except Exception as e:
            logger.error(f"Resolve announcement audience error: {e}")
            raise map_platform_error(e)

        target_users: List[str] = []
        for batch in batches:
            for document in batch:
                if document.id not in target_users:
                    target_users.append(document.id)

        return await self.create(title, content, priority=priority, target_users=target_users)
