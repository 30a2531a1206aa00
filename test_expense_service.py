from decimal import Decimal

import pytest

from conftest import make_image, run
from core.errors import InvalidInput, NotFound, Unauthorized
from core.platform import PlatformError
from models.expense import ExpenseCategory, ExpenseForm, ExpenseStatus
from models.file import FileUpload
from services.expense_service import compute_dashboard_stats
from utils.datetime_helpers import month_bucket, utc_now


def submit(services, owner, category=ExpenseCategory.MEAL, amount="10.00", **extra):
    form = ExpenseForm(category=category, amount=Decimal(amount), **extra)
    return run(services.expenses.create(owner.id, form))


def test_create_expense(services, platform, employee):
    expense = submit(services, employee, description="Lunch with client", location="Porto")

    assert expense.user_id == employee.id
    assert expense.status == ExpenseStatus.PENDING
    assert expense.amount == Decimal("10.00")
    assert expense.currency == "EUR"
    assert expense.month == month_bucket(utc_now())
    assert expense.image_id is None
    assert expense.reviewed_by is None

    stored = platform.documents.collections["expenses"][expense.id].data
    assert stored["type"] == "meal"
    assert stored["rejectionReason"] is None


def test_approve_then_reject_last_write_wins(services, employee, manager):
    expense = submit(services, employee)

    approved = run(services.expenses.approve(expense.id, manager.id))
    assert approved.status == ExpenseStatus.APPROVED
    assert approved.reviewed_by == manager.id
    assert approved.rejection_reason is None

    rejected = run(services.expenses.reject(expense.id, manager.id, "Missing receipt"))
    assert rejected.status == ExpenseStatus.REJECTED
    assert rejected.rejection_reason == "Missing receipt"
    assert rejected.review_date >= approved.review_date


def test_approve_clears_previous_rejection_reason(services, employee, admin):
    expense = submit(services, employee)
    run(services.expenses.reject(expense.id, admin.id, "Wrong category"))

    approved = run(services.expenses.approve(expense.id, admin.id))

    assert approved.status == ExpenseStatus.APPROVED
    assert approved.rejection_reason is None


@pytest.mark.parametrize("reason", ["", "   ", None])
def test_reject_requires_reason(services, employee, manager, reason):
    expense = submit(services, employee)

    with pytest.raises(InvalidInput):
        run(services.expenses.reject(expense.id, manager.id, reason))

    assert run(services.expenses.get_one(expense.id)).status == ExpenseStatus.PENDING


def test_employee_cannot_review(services, employee):
    expense = submit(services, employee)

    with pytest.raises(Unauthorized):
        run(services.expenses.approve(expense.id, employee.id))
    with pytest.raises(Unauthorized):
        run(services.expenses.approve(expense.id, "no-such-user"))


def test_inactive_manager_cannot_review(services, employee, manager):
    expense = submit(services, employee)
    run(services.auth.set_active(manager.id, False))

    with pytest.raises(Unauthorized):
        run(services.expenses.approve(expense.id, manager.id))


def test_update_expense(services, employee):
    expense = submit(services, employee)

    updated = run(services.expenses.update(expense.id, {"amount": "12.50", "description": "Dinner"}))

    assert updated.amount == Decimal("12.5")
    assert updated.description == "Dinner"
    assert updated.category == ExpenseCategory.MEAL


def test_update_cannot_change_status(services, employee):
    expense = submit(services, employee)

    with pytest.raises(InvalidInput):
        run(services.expenses.update(expense.id, {"status": "approved"}))
    with pytest.raises(InvalidInput):
        run(services.expenses.update(expense.id, {"amount": "-3"}))


def test_list_for_user_newest_first(services, employee, manager):
    first = submit(services, employee, amount="5")
    second = submit(services, employee, amount="6")
    submit(services, manager, amount="7")

    expenses = run(services.expenses.list_for_user(employee.id))

    assert [e.id for e in expenses] == [second.id, first.id]


def test_list_all_by_status(services, employee, manager):
    pending = submit(services, employee)
    approved = submit(services, employee)
    run(services.expenses.approve(approved.id, manager.id))

    assert [e.id for e in run(services.expenses.list_all(status=ExpenseStatus.PENDING))] == [pending.id]
    assert len(run(services.expenses.list_all())) == 2
    assert len(run(services.expenses.list_all(limit=1))) == 1


def test_list_for_month(services, employee):
    expense = submit(services, employee)

    assert [e.id for e in run(services.expenses.list_for_month(employee.id, expense.month))] == [expense.id]
    assert run(services.expenses.list_for_month(employee.id, "1999-01")) == []


def test_dashboard_stats(services, employee, manager):
    a = submit(services, employee, ExpenseCategory.MEAL, "10")
    b = submit(services, employee, ExpenseCategory.HOTEL, "50")
    submit(services, employee, ExpenseCategory.MEAL, "5")
    submit(services, manager, ExpenseCategory.FUEL, "99")
    run(services.expenses.approve(a.id, manager.id))
    run(services.expenses.reject(b.id, manager.id, "Too expensive"))

    stats = run(services.expenses.dashboard_stats(employee.id))

    assert stats.total_count == 3
    assert stats.total_amount == Decimal("65")
    assert (stats.pending_count, stats.approved_count, stats.rejected_count) == (1, 1, 1)
    assert stats.category(ExpenseCategory.MEAL).count == 2
    assert stats.category(ExpenseCategory.MEAL).total == Decimal("15")
    assert stats.category(ExpenseCategory.HOTEL).total == Decimal("50")
    assert stats.category(ExpenseCategory.FUEL) is None
    assert len(stats.by_month) == 1
    assert stats.by_month[0].count == 3

    assert run(services.expenses.dashboard_stats()).total_count == 4


def test_dashboard_stats_empty():
    stats = compute_dashboard_stats([])

    assert stats.total_count == 0
    assert stats.total_amount == Decimal("0")
    assert stats.by_month == []


def test_upload_receipt(services, platform, employee):
    expense = submit(services, employee)
    photo = FileUpload(name="receipt.jpg", mime_type="image/jpeg", content=make_image(3000, 1500))

    updated = run(services.expenses.upload_receipt(expense.id, photo))

    assert updated.image_id in platform.blobs.blobs
    assert platform.blobs.blobs[updated.image_id].name == "receipts/receipt.jpg"


def test_upload_receipt_rolls_back_blob_when_patch_fails(services, platform, employee, receipt_pdf, monkeypatch):
    expense = submit(services, employee)

    async def failing_update(collection, document_id, data):
        raise PlatformError(500, "write failed")

    monkeypatch.setattr(platform.documents, "update", failing_update)

    with pytest.raises(Exception):
        run(services.expenses.upload_receipt(expense.id, receipt_pdf))

    assert platform.blobs.blobs == {}


def test_upload_receipt_rejects_bad_file(services, platform, employee):
    expense = submit(services, employee)
    text = FileUpload(name="notes.txt", mime_type="text/plain", content=b"hello")

    with pytest.raises(InvalidInput):
        run(services.expenses.upload_receipt(expense.id, text))
    assert platform.blobs.blobs == {}


def test_delete_removes_receipt(services, platform, employee, receipt_pdf):
    expense = submit(services, employee)
    expense = run(services.expenses.upload_receipt(expense.id, receipt_pdf))

    assert run(services.expenses.delete(expense.id, requested_by=employee)) is True

    assert platform.blobs.blobs == {}
    with pytest.raises(NotFound):
        run(services.expenses.get_one(expense.id))


def test_delete_with_missing_receipt_still_deletes(services, platform, employee, receipt_pdf):
    expense = submit(services, employee)
    expense = run(services.expenses.upload_receipt(expense.id, receipt_pdf))
    del platform.blobs.blobs[expense.image_id]

    assert run(services.expenses.delete(expense.id)) is True
    assert platform.documents.collections["expenses"] == {}


def test_delete_permissions(services, employee, manager, admin):
    expense = submit(services, employee)

    with pytest.raises(Unauthorized):
        run(services.expenses.delete(expense.id, requested_by=manager))

    assert run(services.expenses.delete(expense.id, requested_by=admin)) is True
