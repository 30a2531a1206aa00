import asyncio
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from core.deps import get_current_user, get_services, http_error, require_admin_role
from core.errors import ServiceError
from models.message import BatchResult, Message, MessageForm
from models.user import UserProfile
from services.registry import Services

# Define Router
router = APIRouter()


class MarkManyRequest(BaseModel):
    message_ids: List[str]


class UnreadCount(BaseModel):
    unread: int


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(
    form: MessageForm,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> Message:
    # Broadcasts Are Reserved For Managers / Admins
    if not form.receiver_id and not current_user.is_reviewer:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only managers and admins can message everyone",
        )
    try:
        return await services.messages.send(current_user.id, form)
    except ServiceError as e:
        raise http_error(e)


@router.get("")
async def list_my_messages(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
) -> List[Message]:
    try:
        return await services.messages.user_messages(current_user.id, limit)
    except ServiceError as e:
        raise http_error(e)


@router.get("/all")
async def list_all_messages(
    admin_user: Annotated[UserProfile, Depends(require_admin_role)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
) -> List[Message]:
    try:
        return await services.messages.list_all(limit)
    except ServiceError as e:
        raise http_error(e)


@router.get("/unread-count")
async def unread_count(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> UnreadCount:
    return UnreadCount(unread=await services.messages.unread_count(current_user.id))


@router.get("/contacts")
async def recent_contacts(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    limit: int = 10,
) -> List[str]:
    try:
        return await services.messages.recent_contacts(current_user.id, limit)
    except ServiceError as e:
        raise http_error(e)


@router.get("/search")
async def search_messages(
    q: str,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
) -> List[Message]:
    try:
        return await services.messages.search(current_user.id, q, limit)
    except ServiceError as e:
        raise http_error(e)


@router.get("/conversation/{other_id}")
async def conversation(
    other_id: str,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
) -> List[Message]:
    try:
        return await services.messages.conversation(current_user.id, other_id, limit)
    except ServiceError as e:
        raise http_error(e)


@router.post("/read")
async def mark_many_read(
    body: MarkManyRequest,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> BatchResult:
    # Ids that are missing or addressed to someone else count as failures
    loaded = await asyncio.gather(
        *(services.messages.get_one(message_id) for message_id in body.message_ids),
        return_exceptions=True,
    )
    allowed = [
        message.id
        for message in loaded
        if isinstance(message, Message) and message.is_addressed_to(current_user.id)
    ]
    result = await services.messages.mark_many_read(allowed)
    return BatchResult(successful=result.successful, total=len(body.message_ids))


@router.post("/{message_id}/read")
async def mark_read(
    message_id: str,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> Message:
    try:
        message = await services.messages.get_one(message_id)
    except ServiceError as e:
        raise http_error(e)

    if not message.is_addressed_to(current_user.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only mark messages sent to you as read",
        )

    try:
        return await services.messages.mark_read(message_id)
    except ServiceError as e:
        raise http_error(e)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: str,
    admin_user: Annotated[UserProfile, Depends(require_admin_role)],
    services: Annotated[Services, Depends(get_services)],
) -> None:
    try:
        await services.messages.delete(message_id)
    except ServiceError as e:
        raise http_error(e)
