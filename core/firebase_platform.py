"""
Firebase implementation of the platform gateways.

Accounts: Firebase Authentication (Admin SDK for account management, the
Identity Toolkit REST API for password sign-in and recovery).
Documents: Cloud Firestore.
Blobs: Firebase Storage (a Google Cloud Storage bucket).

The Admin SDK and the Google Cloud clients are blocking, so every call is
pushed off the event loop with asyncio.to_thread.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import firebase_admin
import httpx
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import firestore, storage
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from core.config import PlatformConfig
from core.firebase import initialize_firebase
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
    text_matches,
)

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
BLOB_PREFIX = "files/"
SIGNED_URL_TTL = timedelta(hours=1)

# Identity Toolkit error message -> status code
AUTH_REST_ERRORS = {
    "EMAIL_EXISTS": 409,
    "INVALID_LOGIN_CREDENTIALS": 401,
    "INVALID_PASSWORD": 401,
    "EMAIL_NOT_FOUND": 401,
    "USER_DISABLED": 401,
    "INVALID_ID_TOKEN": 401,
    "TOKEN_EXPIRED": 401,
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": 401,
    "INVALID_OOB_CODE": 401,
    "EXPIRED_OOB_CODE": 401,
    "TOO_MANY_ATTEMPTS_TRY_LATER": 429,
    "INVALID_EMAIL": 400,
    "WEAK_PASSWORD": 400,
    "MISSING_PASSWORD": 400,
    "MISSING_EMAIL": 400,
}


def _google_error(exc: google_exceptions.GoogleAPICallError) -> PlatformError:
    return PlatformError(exc.code or 500, exc.message or str(exc))


def _firebase_error(exc: Exception) -> PlatformError:
    if isinstance(exc, PlatformError):
        return exc
    if isinstance(exc, firebase_auth.EmailAlreadyExistsError):
        return PlatformError(409, "A user with the same email already exists")
    if isinstance(exc, firebase_auth.UserNotFoundError):
        return PlatformError(404, "User not found")
    if isinstance(exc, firebase_exceptions.FirebaseError):
        status = getattr(exc.http_response, "status_code", None) or 500
        return PlatformError(status, str(exc))
    if isinstance(exc, ValueError):
        return PlatformError(400, str(exc))
    return PlatformError(500, str(exc))


async def _call(fn: Callable, *args, **kwargs):
    """Run a blocking Google/Firebase call in a worker thread, mapping its errors."""
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except google_exceptions.GoogleAPICallError as e:
        raise _google_error(e)
    except PlatformError:
        raise
    except Exception as e:
        raise _firebase_error(e)


class FirebaseAccountGateway(AccountGateway):
    def __init__(
        self,
        app: firebase_admin.App,
        config: PlatformConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.app = app
        self.config = config
        # Overridable for tests
        self.transport = transport
        self.current: Optional[Session] = None

    async def _rest(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.config.web_api_key:
            raise PlatformError(500, "FIREBASE_WEB_API_KEY is not configured")

        url = f"{IDENTITY_TOOLKIT_URL}/{endpoint}"
        try:
            async with httpx.AsyncClient(
                timeout=self.config.request_timeout_seconds, transport=self.transport
            ) as client:
                response = await client.post(url, params={"key": self.config.web_api_key}, json=payload)
        except httpx.TimeoutException:
            raise PlatformError(504, f"Auth request {endpoint} timed out")
        except httpx.HTTPError as e:
            raise PlatformError(503, f"Auth request {endpoint} failed: {e}")

        if response.status_code != 200:
            try:
                message = response.json().get("error", {}).get("message", "")
            except ValueError:
                message = response.text
            # Messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
            reason = message.split(" : ")[0].strip()
            code = AUTH_REST_ERRORS.get(reason, response.status_code)
            raise PlatformError(code, message, reason=reason)

        return response.json()

    def _require_current(self) -> Session:
        if self.current is None:
            raise PlatformError(401, "No active session")
        return self.current

    async def _lookup(self, user_id: str) -> AccountInfo:
        record = await _call(firebase_auth.get_user, user_id, app=self.app)
        return AccountInfo(id=record.uid, email=record.email or "", name=record.display_name or "")

    async def create_account(self, email: str, password: str, name: str) -> AccountInfo:
        record = await _call(
            firebase_auth.create_user,
            email=email,
            password=password,
            display_name=name,
            app=self.app,
        )
        return AccountInfo(id=record.uid, email=record.email or email, name=record.display_name or name)

    async def create_session(self, email: str, password: str) -> Session:
        data = await self._rest(
            "accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        expires_in = int(data.get("expiresIn", "3600"))
        self.current = Session(
            user_id=data["localId"],
            id_token=data["idToken"],
            refresh_token=data.get("refreshToken"),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
        return self.current

    async def get_session(self) -> Session:
        return self._require_current()

    async def get_account(self) -> AccountInfo:
        session = self._require_current()
        return await self._lookup(session.user_id)

    async def verify_session(self, token: str) -> AccountInfo:
        try:
            decoded = await asyncio.to_thread(
                firebase_auth.verify_id_token, token, app=self.app, check_revoked=True
            )
        except Exception:
            raise PlatformError(401, "Invalid or expired token")

        uid = decoded.get("uid")
        if not uid:
            raise PlatformError(401, "Token did not contain uid")
        return await self._lookup(uid)

    async def delete_session(self) -> None:
        # ID tokens are stateless; dropping the local session signs this client out
        self._require_current()
        self.current = None

    async def delete_sessions(self) -> None:
        session = self._require_current()
        await _call(firebase_auth.revoke_refresh_tokens, session.user_id, app=self.app)
        self.current = None

    async def update_name(self, user_id: str, name: str) -> AccountInfo:
        record = await _call(firebase_auth.update_user, user_id, display_name=name, app=self.app)
        return AccountInfo(id=record.uid, email=record.email or "", name=record.display_name or "")

    async def update_password(self, new_password: str, current_password: Optional[str] = None) -> None:
        session = self._require_current()

        # Re-authenticate before changing credentials
        if current_password is not None:
            account = await self._lookup(session.user_id)
            await self._rest(
                "accounts:signInWithPassword",
                {"email": account.email, "password": current_password, "returnSecureToken": False},
            )

        await _call(firebase_auth.update_user, session.user_id, password=new_password, app=self.app)

    async def create_recovery(self, email: str, redirect_url: str) -> None:
        try:
            await self._rest(
                "accounts:sendOobCode",
                {"requestType": "PASSWORD_RESET", "email": email, "continueUrl": redirect_url},
            )
        except PlatformError as e:
            # Outside sign-in an unknown email is a missing user, not bad credentials
            if e.reason == "EMAIL_NOT_FOUND":
                raise PlatformError(404, "User not found", reason=e.reason)
            raise

    async def update_recovery(self, user_id: str, secret: str, password: str) -> None:
        data = await self._rest("accounts:resetPassword", {"oobCode": secret, "newPassword": password})
        logger.info(f"Password reset completed for {user_id} ({data.get('email', 'unknown email')})")


class FirestoreDocumentGateway(DocumentGateway):
    def __init__(self, client: firestore.Client, timeout: float) -> None:
        self.client = client
        self.timeout = timeout

    @staticmethod
    def _to_document(snapshot) -> Document:
        return Document(
            id=snapshot.id,
            data=snapshot.to_dict() or {},
            created_at=snapshot.create_time,
            updated_at=snapshot.update_time,
        )

    async def _get_snapshot(self, ref):
        snapshot = await _call(ref.get, timeout=self.timeout)
        if not snapshot.exists:
            raise PlatformError(404, f"Document {ref.id} not found")
        return snapshot

    async def create(self, collection: str, document_id: Optional[str], data: Dict[str, Any]) -> Document:
        col = self.client.collection(collection)
        ref = col.document(document_id) if document_id else col.document()
        await _call(ref.create, data, timeout=self.timeout)
        return self._to_document(await self._get_snapshot(ref))

    async def get(self, collection: str, document_id: str) -> Document:
        ref = self.client.collection(collection).document(document_id)
        return self._to_document(await self._get_snapshot(ref))

    async def update(self, collection: str, document_id: str, data: Dict[str, Any]) -> Document:
        ref = self.client.collection(collection).document(document_id)
        # Firestore treats dotted keys as field paths, so map entries update in place
        await _call(ref.update, data, timeout=self.timeout)
        return self._to_document(await self._get_snapshot(ref))

    async def delete(self, collection: str, document_id: str) -> None:
        ref = self.client.collection(collection).document(document_id)
        await _call(ref.delete, option=self.client.write_option(exists=True), timeout=self.timeout)

    async def list(self, collection: str, query: Optional[Query] = None) -> List[Document]:
        query = query or Query()
        q = self.client.collection(collection)

        for field, value in query.equals.items():
            q = q.where(filter=FieldFilter(field, "==", value))
        for field in query.is_null:
            q = q.where(filter=FieldFilter(field, "==", None))
        if query.order_desc:
            q = q.order_by(query.order_desc, direction="DESCENDING")

        # Firestore has no full-text search: fetch the coarse page, filter here,
        # and apply the limit after filtering
        if query.limit is not None and not query.search:
            q = q.limit(query.limit)

        snapshots = await _call(lambda: list(q.stream(timeout=self.timeout)))
        documents = [self._to_document(s) for s in snapshots]

        if query.search:
            field, text = query.search
            documents = [d for d in documents if text_matches(d.data.get(field), text)]
            if query.limit is not None:
                documents = documents[: query.limit]

        return documents


class FirebaseBlobGateway(BlobGateway):
    def __init__(self, bucket) -> None:
        self.bucket = bucket

    @staticmethod
    def _to_info(blob) -> BlobInfo:
        metadata = blob.metadata or {}
        return BlobInfo(
            id=blob.name[len(BLOB_PREFIX):],
            name=metadata.get("name", blob.name),
            mime_type=blob.content_type or "application/octet-stream",
            size=blob.size or 0,
            created_at=blob.time_created,
        )

    async def _existing(self, blob_id: str):
        blob = await _call(self.bucket.get_blob, f"{BLOB_PREFIX}{blob_id}")
        if blob is None:
            raise PlatformError(404, f"File {blob_id} not found")
        return blob

    async def create(self, blob_id: str, name: str, content: bytes, mime_type: str) -> BlobInfo:
        blob = self.bucket.blob(f"{BLOB_PREFIX}{blob_id}")
        blob.metadata = {"name": name}
        await _call(blob.upload_from_string, content, content_type=mime_type, if_generation_match=0)
        return self._to_info(blob)

    async def get(self, blob_id: str) -> BlobInfo:
        return self._to_info(await self._existing(blob_id))

    async def download(self, blob_id: str) -> bytes:
        blob = await self._existing(blob_id)
        return await _call(blob.download_as_bytes)

    async def delete(self, blob_id: str) -> None:
        blob = self.bucket.blob(f"{BLOB_PREFIX}{blob_id}")
        await _call(blob.delete)

    async def list(self, limit: Optional[int] = None) -> List[BlobInfo]:
        blobs = await _call(lambda: list(self.bucket.list_blobs(prefix=BLOB_PREFIX, max_results=limit)))
        return [self._to_info(b) for b in blobs]

    def _signed(self, blob_id: str, **kwargs) -> str:
        blob = self.bucket.blob(f"{BLOB_PREFIX}{blob_id}")
        return blob.generate_signed_url(version="v4", expiration=SIGNED_URL_TTL, method="GET", **kwargs)

    def view_url(self, blob_id: str) -> str:
        return self._signed(blob_id, response_disposition="inline")

    def download_url(self, blob_id: str) -> str:
        return self._signed(blob_id, response_disposition="attachment")

    def preview_url(self, blob_id: str, width: Optional[int] = None, height: Optional[int] = None) -> str:
        # Size hints travel as signed query parameters for the image resizing front end
        params = {}
        if width:
            params["width"] = str(width)
        if height:
            params["height"] = str(height)
        return self._signed(blob_id, response_disposition="inline", query_parameters=params or None)


def create_firebase_platform(config: PlatformConfig) -> Platform:
    app = initialize_firebase(config)
    database_id = None if config.database_id == "(default)" else config.database_id
    client = firestore.client(app=app, database_id=database_id)
    bucket = storage.bucket(config.bucket_id, app=app)

    return Platform(
        config=config,
        accounts=FirebaseAccountGateway(app, config),
        documents=FirestoreDocumentGateway(client, config.request_timeout_seconds),
        blobs=FirebaseBlobGateway(bucket),
    )
