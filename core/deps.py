import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from core.errors import ServiceError, Unauthenticated
from models.user import UserProfile, UserRole
from services.registry import Services

logger = logging.getLogger(__name__)

# Standard credentials exception
CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)

# Roles Defined
ADMIN_ROLES = [UserRole.ADMIN]
REVIEWER_ROLES = [UserRole.ADMIN, UserRole.MANAGER]


def http_error(e: ServiceError) -> HTTPException:
    """Translate a domain error into the HTTP error the client sees."""
    if e.status_code >= 500:
        logger.error(f"Unexpected service error: {e}")
        return HTTPException(status_code=e.status_code, detail="Internal server error")
    return HTTPException(status_code=e.status_code, detail=e.message)


def get_services(request: Request) -> Services:
    return request.app.state.services


# Bearer Token -> Profile (profile is created on first use)
async def get_current_user(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
) -> UserProfile:

    # 1) Extract & Analyze Authorization Header
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise CREDENTIALS_EXCEPTION
    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        raise CREDENTIALS_EXCEPTION

    # 2) Verify Token & Ensure Profile
    try:
        profile = await services.auth.authenticate_token(token)
    except Unauthenticated:
        raise CREDENTIALS_EXCEPTION
    except ServiceError as e:
        raise http_error(e)

    # 3) Deactivated Accounts Are Locked Out
    if not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return profile


# Manager / Admin Check Dependency
async def require_reviewer_role(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
) -> UserProfile:
    if current_user.role not in REVIEWER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User doesn't have sufficient privileges for this action",
        )
    return current_user


# Admin Role Check Dependency
async def require_admin_role(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
) -> UserProfile:
    if current_user.role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User doesn't have sufficient privileges for this action",
        )
    return current_user
