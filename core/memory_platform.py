"""
In-process implementation of the platform gateways.

Used for local development (PLATFORM_BACKEND=memory) and by the test suite.
Behaves like the Firebase backend for everything the services rely on:
status codes, null checks, descending order, limits, substring search and
dotted-key map updates.
"""

import copy
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from core.config import PlatformConfig
from core.platform import (
    AccountGateway,
    AccountInfo,
    BlobGateway,
    BlobInfo,
    Document,
    DocumentGateway,
    Platform,
    PlatformError,
    Query,
    Session,
    new_id,
    text_matches,
)

MIN_PASSWORD_LENGTH = 8
FAILED_LOGIN_LIMIT = 5


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _set_path(data: Dict[str, Any], dotted_key: str, value: Any) -> None:
    parts = dotted_key.split(".")
    target = data
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = value


class InMemoryAccountGateway(AccountGateway):
    def __init__(self) -> None:
        # user_id -> {"email", "password", "name"}
        self.accounts: Dict[str, Dict[str, str]] = {}
        # token -> user_id
        self.sessions: Dict[str, str] = {}
        # recovery secret -> user_id
        self.recoveries: Dict[str, str] = {}
        self.failed_logins: Dict[str, int] = {}
        self.current: Optional[Session] = None

    def _find_by_email(self, email: str) -> Optional[str]:
        for user_id, account in self.accounts.items():
            if account["email"].lower() == email.lower():
                return user_id
        return None

    def _info(self, user_id: str) -> AccountInfo:
        account = self.accounts[user_id]
        return AccountInfo(id=user_id, email=account["email"], name=account["name"])

    def _require_current(self) -> Session:
        if self.current is None or self.current.id_token not in self.sessions:
            raise PlatformError(401, "No active session")
        return self.current

    async def create_account(self, email: str, password: str, name: str) -> AccountInfo:
        if not email or "@" not in email:
            raise PlatformError(400, "Invalid email")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise PlatformError(400, "Password too short")
        if self._find_by_email(email):
            raise PlatformError(409, "A user with the same email already exists")

        user_id = new_id()
        self.accounts[user_id] = {"email": email, "password": password, "name": name}
        return self._info(user_id)

    async def create_session(self, email: str, password: str) -> Session:
        key = (email or "").lower()
        if self.failed_logins.get(key, 0) >= FAILED_LOGIN_LIMIT:
            raise PlatformError(429, "Too many attempts")

        user_id = self._find_by_email(email or "")
        if user_id is None or self.accounts[user_id]["password"] != password:
            self.failed_logins[key] = self.failed_logins.get(key, 0) + 1
            raise PlatformError(401, "Invalid credentials")

        self.failed_logins.pop(key, None)
        token = secrets.token_urlsafe(24)
        self.sessions[token] = user_id
        self.current = Session(
            user_id=user_id, id_token=token, refresh_token=secrets.token_urlsafe(24)
        )
        return self.current

    async def get_session(self) -> Session:
        return self._require_current()

    async def get_account(self) -> AccountInfo:
        session = self._require_current()
        if session.user_id not in self.accounts:
            raise PlatformError(401, "Account no longer exists")
        return self._info(session.user_id)

    async def verify_session(self, token: str) -> AccountInfo:
        user_id = self.sessions.get(token)
        if user_id is None or user_id not in self.accounts:
            raise PlatformError(401, "Invalid or expired token")
        return self._info(user_id)

    async def delete_session(self) -> None:
        session = self._require_current()
        self.sessions.pop(session.id_token, None)
        self.current = None

    async def delete_sessions(self) -> None:
        session = self._require_current()
        for token, user_id in list(self.sessions.items()):
            if user_id == session.user_id:
                del self.sessions[token]
        self.current = None

    async def update_name(self, user_id: str, name: str) -> AccountInfo:
        if user_id not in self.accounts:
            raise PlatformError(404, f"User {user_id} not found")
        self.accounts[user_id]["name"] = name
        return self._info(user_id)

    async def update_password(self, new_password: str, current_password: Optional[str] = None) -> None:
        session = self._require_current()
        account = self.accounts[session.user_id]
        if current_password is not None and account["password"] != current_password:
            raise PlatformError(401, "Invalid credentials")
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise PlatformError(400, "Password too short")
        account["password"] = new_password

    async def create_recovery(self, email: str, redirect_url: str) -> None:
        user_id = self._find_by_email(email or "")
        if user_id is None:
            raise PlatformError(404, "User not found")
        self.recoveries[secrets.token_urlsafe(16)] = user_id

    async def update_recovery(self, user_id: str, secret: str, password: str) -> None:
        if self.recoveries.get(secret) != user_id:
            raise PlatformError(401, "Invalid recovery secret")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise PlatformError(400, "Password too short")
        self.accounts[user_id]["password"] = password
        del self.recoveries[secret]


class InMemoryDocumentGateway(DocumentGateway):
    def __init__(self) -> None:
        # collection -> document_id -> Document
        self.collections: Dict[str, Dict[str, Document]] = {}

    def _collection(self, collection: str) -> Dict[str, Document]:
        return self.collections.setdefault(collection, {})

    async def create(self, collection: str, document_id: Optional[str], data: Dict[str, Any]) -> Document:
        docs = self._collection(collection)
        document_id = document_id or new_id()
        if document_id in docs:
            raise PlatformError(409, f"Document {document_id} already exists")

        now = _now()
        docs[document_id] = Document(
            id=document_id, data=copy.deepcopy(data), created_at=now, updated_at=now
        )
        return docs[document_id].model_copy(deep=True)

    async def get(self, collection: str, document_id: str) -> Document:
        doc = self._collection(collection).get(document_id)
        if doc is None:
            raise PlatformError(404, f"Document {document_id} not found")
        return doc.model_copy(deep=True)

    async def update(self, collection: str, document_id: str, data: Dict[str, Any]) -> Document:
        doc = self._collection(collection).get(document_id)
        if doc is None:
            raise PlatformError(404, f"Document {document_id} not found")

        for key, value in data.items():
            _set_path(doc.data, key, copy.deepcopy(value))
        doc.updated_at = _now()
        return doc.model_copy(deep=True)

    async def delete(self, collection: str, document_id: str) -> None:
        docs = self._collection(collection)
        if document_id not in docs:
            raise PlatformError(404, f"Document {document_id} not found")
        del docs[document_id]

    async def list(self, collection: str, query: Optional[Query] = None) -> List[Document]:
        query = query or Query()
        results = []
        for doc in self._collection(collection).values():
            data = doc.data
            if any(data.get(field) != value for field, value in query.equals.items()):
                continue
            if any(data.get(field) is not None for field in query.is_null):
                continue
            if query.search and not text_matches(data.get(query.search[0]), query.search[1]):
                continue
            results.append(doc)

        if query.order_desc:
            field = query.order_desc
            # Missing values sort last
            present = [d for d in results if d.data.get(field) is not None]
            missing = [d for d in results if d.data.get(field) is None]
            present.sort(key=lambda d: d.data[field], reverse=True)
            results = present + missing

        if query.limit is not None:
            results = results[: query.limit]

        return [doc.model_copy(deep=True) for doc in results]


class InMemoryBlobGateway(BlobGateway):
    def __init__(self, bucket_id: str = "local-bucket") -> None:
        self.bucket_id = bucket_id
        self.blobs: Dict[str, BlobInfo] = {}
        self.contents: Dict[str, bytes] = {}

    async def create(self, blob_id: str, name: str, content: bytes, mime_type: str) -> BlobInfo:
        if blob_id in self.blobs:
            raise PlatformError(409, f"File {blob_id} already exists")
        info = BlobInfo(
            id=blob_id, name=name, mime_type=mime_type, size=len(content), created_at=_now()
        )
        self.blobs[blob_id] = info
        self.contents[blob_id] = bytes(content)
        return info.model_copy()

    async def get(self, blob_id: str) -> BlobInfo:
        if blob_id not in self.blobs:
            raise PlatformError(404, f"File {blob_id} not found")
        return self.blobs[blob_id].model_copy()

    async def download(self, blob_id: str) -> bytes:
        if blob_id not in self.contents:
            raise PlatformError(404, f"File {blob_id} not found")
        return self.contents[blob_id]

    async def delete(self, blob_id: str) -> None:
        if blob_id not in self.blobs:
            raise PlatformError(404, f"File {blob_id} not found")
        del self.blobs[blob_id]
        self.contents.pop(blob_id, None)

    async def list(self, limit: Optional[int] = None) -> List[BlobInfo]:
        files = sorted(self.blobs.values(), key=lambda b: b.created_at, reverse=True)
        if limit is not None:
            files = files[:limit]
        return [info.model_copy() for info in files]

    def _base(self, blob_id: str) -> str:
        return f"memory://{self.bucket_id}/files/{blob_id}"

    def view_url(self, blob_id: str) -> str:
        return f"{self._base(blob_id)}/view"

    def download_url(self, blob_id: str) -> str:
        return f"{self._base(blob_id)}/download"

    def preview_url(self, blob_id: str, width: Optional[int] = None, height: Optional[int] = None) -> str:
        params = {}
        if width:
            params["width"] = width
        if height:
            params["height"] = height
        url = f"{self._base(blob_id)}/preview"
        return f"{url}?{urlencode(params)}" if params else url


def create_memory_platform(config: Optional[PlatformConfig] = None) -> Platform:
    config = config or PlatformConfig(backend="memory")
    return Platform(
        config=config,
        accounts=InMemoryAccountGateway(),
        documents=InMemoryDocumentGateway(),
        blobs=InMemoryBlobGateway(config.bucket_id or "local-bucket"),
    )
