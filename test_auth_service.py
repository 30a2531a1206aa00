import pytest

from conftest import DEFAULT_PASSWORD, make_user, run
from core.errors import EmailInUse, InvalidCredentials, InvalidInput, NotFound, RateLimited
from core.platform import AccountInfo
from models.user import UserRole
from services.auth_service import generate_employee_code


def test_employee_code_format():
    code = generate_employee_code()
    assert code.startswith("EMP-")
    assert 10000 <= int(code[4:]) <= 99999


def test_register_creates_profile_with_defaults(services, platform):
    result = run(services.auth.register("Ana Costa", "ana@example.com", DEFAULT_PASSWORD, phone="912345678"))

    profile = result.profile
    assert profile.name == "Ana Costa"
    assert profile.email == "ana@example.com"
    assert profile.role == UserRole.EMPLOYEE
    assert profile.is_active
    assert profile.phone == "912345678"
    assert profile.tax_id is None
    assert profile.employee_code.startswith("EMP-")
    assert result.session.user_id == profile.id

    stored = platform.documents.collections["users"][profile.id].data
    assert stored["nif"] == ""
    assert stored["avatarUrl"] == ""


def test_ensure_profile_is_idempotent(services, platform):
    account = run(platform.accounts.create_account("dan@example.com", DEFAULT_PASSWORD, "Dan"))

    first = run(services.auth.ensure_profile(account))
    second = run(services.auth.ensure_profile(account))

    assert first.id == second.id == account.id
    assert first.employee_code == second.employee_code
    assert len(platform.documents.collections["users"]) == 1


def test_login_creates_missing_profile(services, platform):
    run(platform.accounts.create_account("eva@example.com", DEFAULT_PASSWORD, "Eva"))
    assert "users" not in platform.documents.collections

    result = run(services.auth.login("eva@example.com", DEFAULT_PASSWORD))

    assert result.profile.name == "Eva"
    assert len(platform.documents.collections["users"]) == 1


def test_login_wrong_password(services, employee):
    with pytest.raises(InvalidCredentials):
        run(services.auth.login("ana@example.com", "not-the-password"))


def test_login_rate_limited_after_repeated_failures(services, employee):
    for _ in range(5):
        with pytest.raises(InvalidCredentials):
            run(services.auth.login("ana@example.com", "wrong-password"))

    with pytest.raises(RateLimited):
        run(services.auth.login("ana@example.com", DEFAULT_PASSWORD))


def test_register_duplicate_email(services, employee):
    with pytest.raises(EmailInUse):
        run(services.auth.register("Other", "ana@example.com", DEFAULT_PASSWORD))


def test_register_short_password(services):
    with pytest.raises(InvalidInput):
        run(services.auth.register("Short", "short@example.com", "123"))


def test_update_profile_fields(services, employee):
    profile = run(services.auth.update_profile(employee.id, {"phone": "934000111", "tax_id": "123456789"}))

    assert profile.phone == "934000111"
    assert profile.tax_id == "123456789"
    assert profile.role == UserRole.EMPLOYEE


def test_update_profile_rejects_role(services, employee):
    with pytest.raises(InvalidInput):
        run(services.auth.update_profile(employee.id, {"role": "admin"}))

    assert run(services.auth.get_profile(employee.id)).role == UserRole.EMPLOYEE


def test_rename_updates_account_name(services, platform, employee):
    run(services.auth.update_profile(employee.id, {"name": "Ana C."}))

    assert platform.accounts.accounts[employee.id]["name"] == "Ana C."


def test_get_current_user(services, employee):
    assert run(services.auth.get_current_user()).id == employee.id
    assert run(services.auth.is_authenticated())

    run(services.auth.logout())

    assert run(services.auth.get_current_user()) is None
    assert not run(services.auth.is_authenticated())


def test_authenticate_token(services, employee):
    session = run(services.auth.get_current_session())

    assert run(services.auth.authenticate_token(session.id_token)).id == employee.id


def test_change_password(services, employee):
    run(services.auth.change_password("new-password-1", DEFAULT_PASSWORD))
    run(services.auth.logout())

    with pytest.raises(InvalidCredentials):
        run(services.auth.login("ana@example.com", DEFAULT_PASSWORD))
    assert run(services.auth.login("ana@example.com", "new-password-1")).profile.id == employee.id


def test_password_recovery(services, platform, employee):
    run(services.auth.recover_password("ana@example.com"))
    secret = next(iter(platform.accounts.recoveries))

    run(services.auth.complete_password_recovery(employee.id, secret, "recovered-pass"))

    assert run(services.auth.login("ana@example.com", "recovered-pass")).profile.id == employee.id


def test_recover_unknown_email(services):
    with pytest.raises(NotFound):
        run(services.auth.recover_password("nobody@example.com"))


def test_list_profiles_by_role(services, employee, manager, admin):
    make_user(services, "Abel Gomes", "abel@example.com")

    employees = run(services.auth.list_profiles(UserRole.EMPLOYEE))
    everyone = run(services.auth.list_profiles())

    assert [p.name for p in employees] == ["Abel Gomes", "Ana Costa"]
    assert len(everyone) == 4


def test_set_active(services, employee):
    assert not run(services.auth.set_active(employee.id, False)).is_active


def test_ensure_profile_keeps_existing_role(services, manager):
    account = AccountInfo(id=manager.id, email=manager.email, name=manager.name)

    assert run(services.auth.ensure_profile(account)).role == UserRole.MANAGER
