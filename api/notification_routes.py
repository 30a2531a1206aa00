from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from core.deps import get_current_user, get_services, http_error, require_admin_role, require_reviewer_role
from core.errors import ServiceError
from models.message import BatchResult
from models.notification import Notification, NotificationCreate, NotificationPriority
from models.user import UserProfile, UserRole
from services.registry import Services

# Define Router
router = APIRouter()


class AnnouncementRequest(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    target_roles: Optional[List[UserRole]] = None


class UnreadCount(BaseModel):
    unread: int


@router.get("")
async def list_my_notifications(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
    priority: Optional[NotificationPriority] = None,
) -> List[Notification]:
    try:
        if priority:
            return await services.notifications.by_priority(priority, current_user.id, limit)
        return await services.notifications.user_notifications(current_user.id, limit)
    except ServiceError as e:
        raise http_error(e)


@router.get("/all")
async def list_all_notifications(
    reviewer: Annotated[UserProfile, Depends(require_reviewer_role)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
) -> List[Notification]:
    try:
        return await services.notifications.list_all(limit)
    except ServiceError as e:
        raise http_error(e)


@router.get("/unread-count")
async def unread_count(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> UnreadCount:
    return UnreadCount(unread=await services.notifications.unread_count(current_user.id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(
    body: NotificationCreate,
    reviewer: Annotated[UserProfile, Depends(require_reviewer_role)],
    services: Annotated[Services, Depends(get_services)],
) -> Notification:
    try:
        return await services.notifications.create(
            body.title,
            body.content,
            priority=body.priority,
            target_users=body.target_users,
            expires_at=body.expires_at,
        )
    except ServiceError as e:
        raise http_error(e)


@router.post("/announcements", status_code=status.HTTP_201_CREATED)
async def send_announcement(
    body: AnnouncementRequest,
    reviewer: Annotated[UserProfile, Depends(require_reviewer_role)],
    services: Annotated[Services, Depends(get_services)],
) -> Notification:
    try:
        return await services.notifications.send_announcement(
            body.title, body.content, priority=body.priority, target_roles=body.target_roles
        )
    except ServiceError as e:
        raise http_error(e)


@router.post("/read-all")
async def mark_all_read(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> BatchResult:
    try:
        return await services.notifications.mark_all_read(current_user.id)
    except ServiceError as e:
        raise http_error(e)


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> Notification:
    try:
        return await services.notifications.mark_read(notification_id, current_user.id)
    except ServiceError as e:
        raise http_error(e)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str,
    admin_user: Annotated[UserProfile, Depends(require_admin_role)],
    services: Annotated[Services, Depends(get_services)],
) -> None:
    try:
        await services.notifications.delete(notification_id)
    except ServiceError as e:
        raise http_error(e)
