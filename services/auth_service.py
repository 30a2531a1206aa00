"""
Authentication and user profile service.

Every authenticated account must have exactly one profile document in the
users collection under the same id. Accounts created outside the register
flow have none, so ensure_profile creates it the first time it is needed.
"""

import logging
import random
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from core.errors import (
    EmailInUse,
    InvalidCredentials,
    InvalidInput,
    NotFound,
    RateLimited,
    ServiceError,
    Unexpected,
    map_platform_error,
)
from core.platform import AccountInfo, Platform, PlatformError, Query, Session
from models.user import ProfileUpdate, UserProfile, UserRole
from utils.datetime_helpers import utc_now

logger = logging.getLogger(__name__)


def generate_employee_code() -> str:
    return f"EMP-{random.randint(10000, 99999)}"


class LoginResult(BaseModel):
    session: Session
    profile: UserProfile


class AuthService:
    def __init__(self, platform: Platform) -> None:
        self.platform = platform
        self.collection = platform.collections.users

    # --- Profiles ---

    def _new_profile_data(
        self,
        account: AccountInfo,
        phone: Optional[str] = None,
        tax_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        now = utc_now()
        return {
            "name": account.name,
            "email": account.email,
            "role": UserRole.EMPLOYEE.value,
            "employeeId": generate_employee_code(),
            "entryDate": now,
            "createdAt": now,
            "updatedAt": now,
            "isActive": True,
            "phone": phone or "",
            "nif": tax_id or "",
            "avatarUrl": "",
        }

    async def ensure_profile(
        self,
        account: AccountInfo,
        phone: Optional[str] = None,
        tax_id: Optional[str] = None,
    ) -> UserProfile:
        """Return the account's profile, creating it with defaults if it is missing.

        Idempotent: a second call finds the document and writes nothing.
        """
        documents = self.platform.documents
        try:
            return UserProfile.from_document(await documents.get(self.collection, account.id))
        except PlatformError as e:
            if e.code != 404:
                raise map_platform_error(e)

        logger.warning(f"Profile missing for account {account.id}, creating it now")
        data = self._new_profile_data(account, phone=phone, tax_id=tax_id)
        try:
            document = await documents.create(self.collection, account.id, data)
        except PlatformError as e:
            # Another caller created it between our read and write
            if e.code == 409:
                return UserProfile.from_document(await documents.get(self.collection, account.id))
            raise map_platform_error(e)

        logger.info(f"Profile created for account {account.id}")
        return UserProfile.from_document(document)

    async def get_profile(self, user_id: str) -> UserProfile:
        try:
            document = await self.platform.documents.get(self.collection, user_id)
        except Exception as e:
            raise map_platform_error(e)
        return UserProfile.from_document(document)

    async def list_profiles(self, role: Optional[UserRole] = None) -> List[UserProfile]:
        query = Query(equals={"role": role.value} if role else {})
        try:
            documents = await self.platform.documents.list(self.collection, query)
        except Exception as e:
            raise map_platform_error(e)

        profiles = [UserProfile.from_document(d) for d in documents]
        profiles.sort(key=lambda p: p.name.lower())
        return profiles

    async def _write_profile(self, user_id: str, data: Dict[str, Any]) -> UserProfile:
        data = {**data, "updatedAt": utc_now()}
        try:
            document = await self.platform.documents.update(self.collection, user_id, data)
        except Exception as e:
            logger.error(f"Update profile error for {user_id}: {e}")
            raise map_platform_error(e)
        return UserProfile.from_document(document)

    async def update_profile(self, user_id: str, partial: Dict[str, Any]) -> UserProfile:
        """Write the user-editable profile fields. Role and employee code are not among them."""
        try:
            update = ProfileUpdate.model_validate(partial)
        except ValidationError as e:
            raise InvalidInput(f"Invalid profile update: {e.error_count()} invalid field(s)", cause=e)

        profile = await self._write_profile(user_id, update.to_storage())

        # Keep the account display name in step with the profile
        if update.name:
            try:
                await self.platform.accounts.update_name(user_id, update.name)
            except PlatformError as e:
                logger.warning(f"Could not update account name for {user_id}: {e}")

        return profile

    async def set_role(self, user_id: str, role: UserRole) -> UserProfile:
        return await self._write_profile(user_id, {"role": UserRole(role).value})

    async def set_active(self, user_id: str, is_active: bool) -> UserProfile:
        return await self._write_profile(user_id, {"isActive": bool(is_active)})

    # --- Sessions ---

    async def login(self, email: str, password: str) -> LoginResult:
        try:
            session = await self.platform.accounts.create_session(email, password)
            account = await self.platform.accounts.verify_session(session.id_token)
            profile = await self.ensure_profile(account)
        except PlatformError as e:
            logger.error(f"Login error for {email}: {e}")
            if e.code == 401:
                raise InvalidCredentials("Invalid email or password", cause=e)
            if e.code == 429:
                raise RateLimited("Too many attempts, try again in a few minutes", cause=e)
            raise Unexpected(str(e), cause=e)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Login error for {email}: {e}")
            raise Unexpected(str(e), cause=e)

        return LoginResult(session=session, profile=profile)

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
        tax_id: Optional[str] = None,
    ) -> LoginResult:
        accounts = self.platform.accounts
        try:
            account = await accounts.create_account(email, password, name)
        except PlatformError as e:
            logger.error(f"Register error for {email}: {e}")
            if e.code == 409:
                raise EmailInUse("Email already in use", cause=e)
            if e.code == 400:
                raise InvalidInput("Invalid email or password", cause=e)
            raise map_platform_error(e)

        profile = await self.ensure_profile(account, phone=phone, tax_id=tax_id)

        try:
            session = await accounts.create_session(email, password)
        except Exception as e:
            logger.error(f"Register error for {email} while opening session: {e}")
            raise map_platform_error(e)

        return LoginResult(session=session, profile=profile)

    async def get_current_user(self) -> Optional[UserProfile]:
        """Profile for the active session, or None when there is none (or anything fails)."""
        try:
            account = await self.platform.accounts.get_account()
            return await self.ensure_profile(account)
        except Exception as e:
            logger.info(f"No current user: {e}")
            return None

    async def get_current_session(self) -> Optional[Session]:
        try:
            return await self.platform.accounts.get_session()
        except Exception:
            return None

    async def is_authenticated(self) -> bool:
        try:
            await self.platform.accounts.get_account()
            return True
        except Exception:
            return False

    async def authenticate_token(self, token: str) -> UserProfile:
        """Resolve a bearer token to its profile (creating the profile if needed)."""
        try:
            account = await self.platform.accounts.verify_session(token)
        except Exception as e:
            raise map_platform_error(e)
        return await self.ensure_profile(account)

    # --- Credentials ---

    async def change_password(self, new_password: str, current_password: Optional[str] = None) -> None:
        try:
            await self.platform.accounts.update_password(new_password, current_password)
        except Exception as e:
            logger.error(f"Change password error: {e}")
            raise map_platform_error(e)

    async def recover_password(self, email: str) -> None:
        try:
            await self.platform.accounts.create_recovery(email, self.platform.config.recovery_redirect_url)
        except Exception as e:
            logger.error(f"Password recovery error for {email}: {e}")
            raise map_platform_error(e)

    async def complete_password_recovery(self, user_id: str, secret: str, password: str) -> None:
        try:
            await self.platform.accounts.update_recovery(user_id, secret, password)
        except Exception as e:
            logger.error(f"Complete password recovery error for {user_id}: {e}")
            raise map_platform_error(e)

    async def logout(self) -> None:
        try:
            await self.platform.accounts.delete_session()
        except Exception as e:
            logger.error(f"Logout error: {e}")
            raise map_platform_error(e)

    async def logout_all_sessions(self) -> None:
        try:
            await self.platform.accounts.delete_sessions()
        except Exception as e:
            logger.error(f"Logout all sessions error: {e}")
            raise map_platform_error(e)
