import asyncio
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from pydantic import BaseModel

from core.deps import get_current_user, get_services, http_error, require_admin_role
from core.errors import ServiceError
from models.file import FileUpload, StorageStats, UploadedFile, UploadReport
from models.user import UserProfile
from services.file_service import ATTACHMENTS_FOLDER
from services.registry import Services

# Define Router
router = APIRouter()


class FileUrls(BaseModel):
    view: str
    download: str
    preview: str


async def to_upload(file: UploadFile) -> FileUpload:
    return FileUpload(
        name=file.filename or "file",
        mime_type=file.content_type or "application/octet-stream",
        content=await file.read(),
    )


async def ensure_file_access(services: Services, user: UserProfile, file_id: str) -> None:
    """Reviewers see every file; others only their avatar, receipts and message attachments."""
    if user.is_reviewer or user.avatar_id == file_id:
        return

    try:
        expenses, messages = await asyncio.gather(
            services.expenses.list_for_user(user.id),
            services.messages.user_messages(user.id),
        )
    except ServiceError as e:
        raise http_error(e)

    if any(expense.image_id == file_id for expense in expenses):
        return
    if any(file_id in message.attachments for message in messages):
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You don't have access to this file",
    )


@router.post("/attachments", status_code=status.HTTP_201_CREATED)
async def upload_attachments(
    files: Annotated[List[UploadFile], File(description="Message attachments")],
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> UploadReport:
    uploads = [await to_upload(f) for f in files]
    return await services.files.upload_many(uploads, ATTACHMENTS_FOLDER)


@router.post("/avatar", status_code=status.HTTP_201_CREATED)
async def upload_avatar(
    picture: Annotated[UploadFile, File(description="Profile picture")],
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> UserProfile:
    try:
        uploaded = await services.files.upload_profile_picture(await to_upload(picture))
        return await services.auth.update_profile(current_user.id, {"avatar_id": uploaded.id})
    except ServiceError as e:
        raise http_error(e)


@router.get("")
async def list_files(
    admin_user: Annotated[UserProfile, Depends(require_admin_role)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
) -> List[UploadedFile]:
    try:
        return await services.files.list_files(limit)
    except ServiceError as e:
        raise http_error(e)


@router.get("/stats")
async def storage_stats(
    admin_user: Annotated[UserProfile, Depends(require_admin_role)],
    services: Annotated[Services, Depends(get_services)],
) -> StorageStats:
    try:
        return await services.files.storage_stats()
    except ServiceError as e:
        raise http_error(e)


@router.get("/{file_id}")
async def get_file_info(
    file_id: str,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> UploadedFile:
    await ensure_file_access(services, current_user, file_id)
    info = await services.files.get_file_info(file_id)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {file_id} not found",
        )
    return info


@router.get("/{file_id}/urls")
async def get_file_urls(
    file_id: str,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> FileUrls:
    await ensure_file_access(services, current_user, file_id)
    return FileUrls(
        view=services.files.get_file_url(file_id),
        download=services.files.get_download_url(file_id),
        preview=services.files.get_preview_url(file_id, width, height),
    )


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: str,
    admin_user: Annotated[UserProfile, Depends(require_admin_role)],
    services: Annotated[Services, Depends(get_services)],
) -> None:
    if not await services.files.delete_file(file_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {file_id} could not be deleted",
        )
