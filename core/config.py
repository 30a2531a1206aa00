import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


class CollectionIds(BaseModel):
    users: str = "users"
    expenses: str = "expenses"
    messages: str = "messages"
    notifications: str = "notifications"


class PlatformConfig(BaseModel):
    """Deployment configuration for the backend platform.

    Built once at process start and handed to every gateway and service.
    """

    backend: str = "firebase"
    project_id: Optional[str] = None
    database_id: str = "(default)"
    bucket_id: Optional[str] = None
    collections: CollectionIds = Field(default_factory=CollectionIds)

    # Firebase Auth REST key (public, identifies the web app)
    web_api_key: Optional[str] = None

    # Server-side only; never serialized back out
    service_account_key: Optional[str] = Field(default=None, exclude=True, repr=False)
    service_account_key_path: Optional[str] = Field(default=None, exclude=True, repr=False)

    request_timeout_seconds: float = 30.0
    recovery_redirect_url: str = "http://localhost:5173/reset-password"


def load_config() -> PlatformConfig:
    """Build a PlatformConfig from environment variables."""

    collections = CollectionIds(
        users=os.getenv("USERS_COLLECTION", "users"),
        expenses=os.getenv("EXPENSES_COLLECTION", "expenses"),
        messages=os.getenv("MESSAGES_COLLECTION", "messages"),
        notifications=os.getenv("NOTIFICATIONS_COLLECTION", "notifications"),
    )

    return PlatformConfig(
        backend=os.getenv("PLATFORM_BACKEND", "firebase").lower(),
        project_id=os.getenv("FIREBASE_PROJECT_ID"),
        database_id=os.getenv("FIRESTORE_DATABASE_ID", "(default)"),
        bucket_id=os.getenv("FIREBASE_STORAGE_BUCKET"),
        collections=collections,
        web_api_key=os.getenv("FIREBASE_WEB_API_KEY"),
        service_account_key=os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY"),
        service_account_key_path=os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY_PATH"),
        request_timeout_seconds=float(os.getenv("PLATFORM_TIMEOUT_SECONDS", "30")),
        recovery_redirect_url=os.getenv(
            "PASSWORD_RECOVERY_URL", "http://localhost:5173/reset-password"
        ),
    )
