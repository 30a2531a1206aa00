import logging
from typing import Any, Dict, Optional

from core.errors import ServiceError
from models.user import UserProfile
from services.auth_service import AuthService
from stores.base import ERROR, Notifier, Store

logger = logging.getLogger(__name__)


class AuthStore(Store):
    """Signed-in user and the account actions of the profile screens."""

    def __init__(self, auth: AuthService, notifier: Optional[Notifier] = None) -> None:
        super().__init__(notifier)
        self.auth = auth
        self.user: Optional[UserProfile] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    async def login(self, email: str, password: str) -> bool:
        async with self.loading():
            try:
                result = await self.auth.login(email, password)
            except ServiceError as e:
                self.fail(
                    e,
                    {401: "Incorrect email or password", 429: "Too many attempts. Try again in a few minutes."},
                    "Could not reach the server. Check your connection.",
                )
                return False

        self.user = result.profile
        self.succeed(f"Welcome, {self.user.name}!")
        return True

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
        tax_id: Optional[str] = None,
    ) -> bool:
        async with self.loading():
            try:
                result = await self.auth.register(name, email, password, phone=phone, tax_id=tax_id)
            except ServiceError as e:
                self.fail(
                    e,
                    {409: "Email already in use", 400: "Invalid data. Check email and password."},
                    "Could not create the account. Try again.",
                )
                return False

        self.user = result.profile
        self.succeed("Account created!")
        return True

    async def logout(self) -> None:
        """Always clears the local user, even when the platform call fails."""
        async with self.loading():
            try:
                await self.auth.logout()
            except ServiceError as e:
                logger.warning(f"Logout failed, clearing local state anyway: {e}")
            self.user = None
        self.succeed("Signed out")

    async def check_auth(self) -> Optional[UserProfile]:
        async with self.loading():
            self.user = await self.auth.get_current_user()
        return self.user

    async def update_profile(self, partial: Dict[str, Any]) -> bool:
        if self.user is None:
            self.notify(ERROR, "No signed-in user to update")
            return False

        try:
            self.user = await self.auth.update_profile(self.user.id, partial)
        except ServiceError as e:
            self.fail(e, {400: "Some profile fields can't be changed"}, f"Could not update profile: {e.message}")
            return False

        self.succeed("Profile updated")
        return True

    async def change_password(self, current_password: str, new_password: str) -> bool:
        try:
            await self.auth.change_password(new_password, current_password)
        except ServiceError as e:
            self.fail(
                e,
                {401: "Current password is incorrect", 400: "New password is too weak or invalid"},
                "Could not change password",
            )
            return False

        self.succeed("Password changed")
        return True
