from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from core.deps import get_current_user, get_services, http_error, require_admin_role, require_reviewer_role
from core.errors import NotFound, ServiceError
from models.user import UserProfile, UserRole
from services.auth_service import LoginResult
from services.registry import Services

# Define Router
router = APIRouter()


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str
    password: str
    phone: Optional[str] = None
    tax_id: Optional[str] = None


class RecoveryRequest(BaseModel):
    email: str


class RecoveryComplete(BaseModel):
    user_id: str
    secret: str
    password: str


class RoleUpdate(BaseModel):
    role: UserRole


class ActiveUpdate(BaseModel):
    is_active: bool


@router.post("/login")
async def login(
    body: LoginRequest,
    services: Annotated[Services, Depends(get_services)],
) -> LoginResult:
    try:
        return await services.auth.login(body.email, body.password)
    except ServiceError as e:
        raise http_error(e)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    services: Annotated[Services, Depends(get_services)],
) -> LoginResult:
    try:
        return await services.auth.register(
            body.name, body.email, body.password, phone=body.phone, tax_id=body.tax_id
        )
    except ServiceError as e:
        raise http_error(e)


@router.post("/password-recovery", status_code=status.HTTP_202_ACCEPTED)
async def recover_password(
    body: RecoveryRequest,
    services: Annotated[Services, Depends(get_services)],
):
    try:
        await services.auth.recover_password(body.email)
    except NotFound:
        # Unknown emails get the same answer
        pass
    except ServiceError as e:
        raise http_error(e)
    return {"message": "If the email exists, a recovery link was sent"}


@router.post("/password-recovery/complete")
async def complete_password_recovery(
    body: RecoveryComplete,
    services: Annotated[Services, Depends(get_services)],
):
    try:
        await services.auth.complete_password_recovery(body.user_id, body.secret, body.password)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Password updated"}


@router.get("/me")
async def read_me(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
) -> UserProfile:
    return current_user


@router.patch("/me")
async def update_me(
    partial: Dict[str, Any],
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> UserProfile:
    try:
        return await services.auth.update_profile(current_user.id, partial)
    except ServiceError as e:
        raise http_error(e)


# --- User Management ---


@router.get("/users")
async def list_users(
    reviewer: Annotated[UserProfile, Depends(require_reviewer_role)],
    services: Annotated[Services, Depends(get_services)],
    role: Optional[UserRole] = None,
) -> List[UserProfile]:
    try:
        return await services.auth.list_profiles(role)
    except ServiceError as e:
        raise http_error(e)


@router.get("/users/{user_id}")
async def get_user(
    user_id: str,
    reviewer: Annotated[UserProfile, Depends(require_reviewer_role)],
    services: Annotated[Services, Depends(get_services)],
) -> UserProfile:
    try:
        return await services.auth.get_profile(user_id)
    except ServiceError as e:
        raise http_error(e)


@router.put("/users/{user_id}/role")
async def set_user_role(
    user_id: str,
    body: RoleUpdate,
    admin_user: Annotated[UserProfile, Depends(require_admin_role)],
    services: Annotated[Services, Depends(get_services)],
) -> UserProfile:
    try:
        return await services.auth.set_role(user_id, body.role)
    except ServiceError as e:
        raise http_error(e)


@router.put("/users/{user_id}/active")
async def set_user_active(
    user_id: str,
    body: ActiveUpdate,
    admin_user: Annotated[UserProfile, Depends(require_admin_role)],
    services: Annotated[Services, Depends(get_services)],
) -> UserProfile:
    try:
        return await services.auth.set_active(user_id, body.is_active)
    except ServiceError as e:
        raise http_error(e)
