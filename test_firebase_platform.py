import json
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import run
from core.config import PlatformConfig
from core.errors import NotFound, map_platform_error
from core.firebase_platform import FirebaseAccountGateway, firebase_auth
from core.memory_platform import InMemoryBlobGateway, InMemoryDocumentGateway
from core.platform import Platform, PlatformError
from main import create_app
from services.registry import Services

CONFIG = PlatformConfig(web_api_key="test-key", recovery_redirect_url="https://app.example.com/reset")


def auth_error(message, status_code=400):
    return httpx.Response(status_code, json={"error": {"code": status_code, "message": message}})


def gateway(handler):
    return FirebaseAccountGateway(app=None, config=CONFIG, transport=httpx.MockTransport(handler))


def test_sign_in_opens_session():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(
            200, json={"localId": "uid-1", "idToken": "id-token", "refreshToken": "refresh", "expiresIn": "3600"}
        )

    accounts = gateway(handler)
    session = run(accounts.create_session("ana@example.com", "password123"))

    assert session.user_id == "uid-1"
    assert session.id_token == "id-token"
    assert run(accounts.get_session()) == session
    assert requests[0].url.path.endswith("accounts:signInWithPassword")
    assert requests[0].url.params["key"] == "test-key"
    assert json.loads(requests[0].content)["email"] == "ana@example.com"


def test_sign_in_error_codes():
    expected = {
        "INVALID_LOGIN_CREDENTIALS": 401,
        "EMAIL_NOT_FOUND": 401,
        "TOO_MANY_ATTEMPTS_TRY_LATER : Access disabled": 429,
    }
    for message, code in expected.items():
        accounts = gateway(lambda request, message=message: auth_error(message))
        with pytest.raises(PlatformError) as exc_info:
            run(accounts.create_session("ana@example.com", "wrong"))
        assert exc_info.value.code == code


def test_recovery_for_unknown_email_is_not_found():
    accounts = gateway(lambda request: auth_error("EMAIL_NOT_FOUND"))

    with pytest.raises(PlatformError) as exc_info:
        run(accounts.create_recovery("ghost@example.com", CONFIG.recovery_redirect_url))

    assert exc_info.value.code == 404
    assert isinstance(map_platform_error(exc_info.value), NotFound)


def test_recovery_sends_reset_email():
    payloads = []

    def handler(request):
        payloads.append(json.loads(request.content))
        return httpx.Response(200, json={"email": "ana@example.com"})

    run(gateway(handler).create_recovery("ana@example.com", CONFIG.recovery_redirect_url))

    assert payloads == [
        {"requestType": "PASSWORD_RESET", "email": "ana@example.com", "continueUrl": "https://app.example.com/reset"}
    ]


def test_recovery_route_hides_unknown_email():
    platform = Platform(
        config=CONFIG,
        accounts=gateway(lambda request: auth_error("EMAIL_NOT_FOUND")),
        documents=InMemoryDocumentGateway(),
        blobs=InMemoryBlobGateway(),
    )
    client = TestClient(create_app(Services(platform)))

    response = client.post("/auth/password-recovery", json={"email": "ghost@example.com"})

    assert response.status_code == 202


def test_update_name_targets_given_user(monkeypatch):
    calls = []

    def fake_update_user(uid, **kwargs):
        calls.append((uid, kwargs))
        return SimpleNamespace(uid=uid, email="ana@example.com", display_name=kwargs["display_name"])

    monkeypatch.setattr(firebase_auth, "update_user", fake_update_user)
    accounts = gateway(lambda request: httpx.Response(500))

    account = run(accounts.update_name("uid-1", "Ana Renamed"))

    assert account.name == "Ana Renamed"
    assert calls == [("uid-1", {"display_name": "Ana Renamed", "app": None})]
