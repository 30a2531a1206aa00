"""
Backend data platform boundary.

Services never talk to an SDK directly; they go through the three gateways
bundled in a Platform. core.firebase_platform talks to Firebase, and
core.memory_platform keeps everything in process for tests and local runs.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.config import PlatformConfig


class PlatformError(Exception):
    """Error raised by a gateway, carrying an HTTP-style status code."""

    def __init__(self, code: int, message: str = "", reason: Optional[str] = None):
        super().__init__(message or f"Platform error {code}")
        self.code = code
        self.message = message
        self.reason = reason


# --- Records Returned By Gateways ---


class Document(BaseModel):
    id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Query(BaseModel):
    """Filter primitives every backend must support."""

    equals: Dict[str, Any] = Field(default_factory=dict)
    is_null: List[str] = Field(default_factory=list)
    order_desc: Optional[str] = None
    limit: Optional[int] = None
    search: Optional[Tuple[str, str]] = None


class AccountInfo(BaseModel):
    id: str
    email: str
    name: str = ""


class Session(BaseModel):
    user_id: str
    id_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class BlobInfo(BaseModel):
    id: str
    name: str
    mime_type: str
    size: int
    created_at: Optional[datetime] = None


def new_id() -> str:
    return uuid.uuid4().hex[:20]


def text_matches(value: Any, text: str) -> bool:
    """Case-insensitive substring match used to emulate full-text search."""
    if not isinstance(value, str):
        return False
    return text.strip().lower() in value.lower()


# --- Gateway Contracts ---


class AccountGateway:
    async def create_account(self, email: str, password: str, name: str) -> AccountInfo:
        raise NotImplementedError

    async def create_session(self, email: str, password: str) -> Session:
        raise NotImplementedError

    async def get_session(self) -> Session:
        raise NotImplementedError

    async def get_account(self) -> AccountInfo:
        raise NotImplementedError

    async def verify_session(self, token: str) -> AccountInfo:
        raise NotImplementedError

    async def delete_session(self) -> None:
        raise NotImplementedError

    async def delete_sessions(self) -> None:
        raise NotImplementedError

    async def update_name(self, user_id: str, name: str) -> AccountInfo:
        raise NotImplementedError

    async def update_password(self, new_password: str, current_password: Optional[str] = None) -> None:
        raise NotImplementedError

    async def create_recovery(self, email: str, redirect_url: str) -> None:
        raise NotImplementedError

    async def update_recovery(self, user_id: str, secret: str, password: str) -> None:
        raise NotImplementedError


class DocumentGateway:
    async def create(self, collection: str, document_id: Optional[str], data: Dict[str, Any]) -> Document:
        raise NotImplementedError

    async def get(self, collection: str, document_id: str) -> Document:
        raise NotImplementedError

    async def update(self, collection: str, document_id: str, data: Dict[str, Any]) -> Document:
        """Patch fields. Dotted keys ("readBy.u1") address a single map entry."""
        raise NotImplementedError

    async def delete(self, collection: str, document_id: str) -> None:
        raise NotImplementedError

    async def list(self, collection: str, query: Optional[Query] = None) -> List[Document]:
        raise NotImplementedError


class BlobGateway:
    async def create(self, blob_id: str, name: str, content: bytes, mime_type: str) -> BlobInfo:
        raise NotImplementedError

    async def get(self, blob_id: str) -> BlobInfo:
        raise NotImplementedError

    async def download(self, blob_id: str) -> bytes:
        raise NotImplementedError

    async def delete(self, blob_id: str) -> None:
        raise NotImplementedError

    async def list(self, limit: Optional[int] = None) -> List[BlobInfo]:
        raise NotImplementedError

    def view_url(self, blob_id: str) -> str:
        raise NotImplementedError

    def download_url(self, blob_id: str) -> str:
        raise NotImplementedError

    def preview_url(self, blob_id: str, width: Optional[int] = None, height: Optional[int] = None) -> str:
        raise NotImplementedError


class Platform:
    def __init__(
        self,
        config: PlatformConfig,
        accounts: AccountGateway,
        documents: DocumentGateway,
        blobs: BlobGateway,
    ) -> None:
        self.config = config
        self.accounts = accounts
        self.documents = documents
        self.blobs = blobs

    @property
    def collections(self):
        return self.config.collections


def build_platform(config: PlatformConfig) -> Platform:
    """Create the platform selected by config.backend."""
    if config.backend == "memory":
        from core.memory_platform import create_memory_platform

        return create_memory_platform(config)

    from core.firebase_platform import create_firebase_platform

    return create_firebase_platform(config)
