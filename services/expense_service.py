"""
Expense service: submission, receipts, review and dashboard statistics.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from core.errors import InvalidInput, Unauthorized, map_platform_error
from core.platform import Platform, PlatformError, Query
from models.expense import (
    DEFAULT_CURRENCY,
    CategoryTotal,
    DashboardStats,
    Expense,
    ExpenseForm,
    ExpenseStatus,
    ExpenseUpdate,
    MonthlyTotal,
)
from models.file import FileUpload
from models.user import UserProfile, UserRole
from services.file_service import FileService
from utils.datetime_helpers import month_bucket, utc_now

logger = logging.getLogger(__name__)

# Every list is newest first
ORDER_FIELD = "createdAt"


class ExpenseService:
    def __init__(self, platform: Platform, files: Optional[FileService] = None) -> None:
        self.platform = platform
        self.files = files or FileService(platform)
        self.collection = platform.collections.expenses

    async def _list(self, query: Query) -> List[Expense]:
        query.order_desc = ORDER_FIELD
        try:
            documents = await self.platform.documents.list(self.collection, query)
        except Exception as e:
            logger.error(f"List expenses error: {e}")
            raise map_platform_error(e)
        return [Expense.from_document(d) for d in documents]

    async def _patch(self, expense_id: str, data: Dict[str, Any], action: str) -> Expense:
        data = {**data, "updatedAt": utc_now()}
        try:
            document = await self.platform.documents.update(self.collection, expense_id, data)
        except Exception as e:
            logger.error(f"{action} expense error for {expense_id}: {e}")
            raise map_platform_error(e)
        return Expense.from_document(document)

    async def _reviewer(self, reviewer_id: str) -> UserProfile:
        """Load the reviewer's profile and check they may review expenses."""
        try:
            document = await self.platform.documents.get(self.platform.collections.users, reviewer_id)
        except PlatformError as e:
            if e.code == 404:
                raise Unauthorized(f"Reviewer {reviewer_id} has no profile", cause=e)
            raise map_platform_error(e)

        reviewer = UserProfile.from_document(document)
        if not reviewer.is_reviewer or not reviewer.is_active:
            raise Unauthorized("Only managers and admins can review expenses")
        return reviewer

    # --- Create ---

    async def create(self, owner_id: str, form: ExpenseForm) -> Expense:
        now = utc_now()
        data = {
            "userId": owner_id,
            "type": form.category.value,
            "amount": float(form.amount),
            "description": form.description or "",
            "location": form.location or "",
            "placeDetails": form.place_details or "",
            "status": ExpenseStatus.PENDING.value,
            "date": now,
            "month": month_bucket(now),
            "currency": DEFAULT_CURRENCY,
            "imageId": None,
            "reviewedBy": None,
            "reviewDate": None,
            "rejectionReason": None,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            document = await self.platform.documents.create(self.collection, None, data)
        except Exception as e:
            logger.error(f"Create expense error for user {owner_id}: {e}")
            raise map_platform_error(e)

        logger.info(f"Expense {document.id} created by {owner_id} ({form.category.value}, {form.amount})")
        return Expense.from_document(document)

    async def upload_receipt(self, expense_id: str, file: FileUpload) -> Expense:
        """
        Upload the receipt, then point the expense at it.

        The two writes are not transactional. If the patch fails the uploaded
        blob is deleted again and the original error is raised.
        """
        uploaded = await self.files.upload_receipt(file)
        try:
            return await self._patch(expense_id, {"imageId": uploaded.id}, "Upload receipt")
        except Exception:
            logger.warning(f"Removing orphaned receipt {uploaded.id} for expense {expense_id}")
            if not await self.files.delete_file(uploaded.id):
                logger.error(f"Orphaned receipt {uploaded.id} could not be removed")
            raise

    # --- Reads ---

    async def list_for_user(self, user_id: str, limit: Optional[int] = None) -> List[Expense]:
        return await self._list(Query(equals={"userId": user_id}, limit=limit))

    async def list_all(self, limit: Optional[int] = None, status: Optional[ExpenseStatus] = None) -> List[Expense]:
        equals = {"status": ExpenseStatus(status).value} if status else {}
        return await self._list(Query(equals=equals, limit=limit))

    async def list_for_month(self, user_id: str, month: str) -> List[Expense]:
        return await self._list(Query(equals={"userId": user_id, "month": month}))

    async def get_one(self, expense_id: str) -> Expense:
        try:
            document = await self.platform.documents.get(self.collection, expense_id)
        except Exception as e:
            logger.error(f"Get expense error for {expense_id}: {e}")
            raise map_platform_error(e)
        return Expense.from_document(document)

    # --- Edits ---

    async def update(self, expense_id: str, partial: Dict[str, Any]) -> Expense:
        try:
            update = ExpenseUpdate.model_validate(partial)
        except ValidationError as e:
            raise InvalidInput(f"Invalid expense update: {e.error_count()} invalid field(s)", cause=e)

        data = update.to_storage()
        if not data:
            return await self.get_one(expense_id)
        return await self._patch(expense_id, data, "Update")

    async def approve(self, expense_id: str, reviewer_id: str) -> Expense:
        await self._reviewer(reviewer_id)
        expense = await self._patch(
            expense_id,
            {
                "status": ExpenseStatus.APPROVED.value,
                "reviewedBy": reviewer_id,
                "reviewDate": utc_now(),
                "rejectionReason": None,
            },
            "Approve",
        )
        logger.info(f"Expense {expense_id} approved by {reviewer_id}")
        return expense

    async def reject(self, expense_id: str, reviewer_id: str, reason: str) -> Expense:
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInput("A rejection reason is required")

        await self._reviewer(reviewer_id)
        expense = await self._patch(
            expense_id,
            {
                "status": ExpenseStatus.REJECTED.value,
                "reviewedBy": reviewer_id,
                "reviewDate": utc_now(),
                "rejectionReason": reason,
            },
            "Reject",
        )
        logger.info(f"Expense {expense_id} rejected by {reviewer_id}")
        return expense

    async def delete(self, expense_id: str, requested_by: Optional[UserProfile] = None) -> bool:
        """
        Delete an expense and, best effort, its receipt.

        The expense is read first so the receipt id is known before the
        document disappears. When requested_by is given only the owner or an
        admin may delete.
        """
        expense = await self.get_one(expense_id)

        if requested_by is not None:
            if requested_by.id != expense.user_id and requested_by.role != UserRole.ADMIN:
                raise Unauthorized("Only the owner or an admin can delete this expense")

        # Delete Receipt If Present
        if expense.image_id:
            try:
                await self.platform.blobs.delete(expense.image_id)
            except Exception as e:
                logger.warning(f"Could not delete receipt {expense.image_id}: {e}")

        try:
            await self.platform.documents.delete(self.collection, expense_id)
        except Exception as e:
            logger.error(f"Delete expense error for {expense_id}: {e}")
            raise map_platform_error(e)

        logger.info(f"Expense {expense_id} deleted")
        return True

    # --- Dashboard ---

    async def dashboard_stats(self, user_id: Optional[str] = None) -> DashboardStats:
        """Scan every matching expense and aggregate it client-side."""
        equals = {"userId": user_id} if user_id else {}
        try:
            documents = await self.platform.documents.list(self.collection, Query(equals=equals))
        except Exception as e:
            logger.error(f"Get dashboard stats error: {e}")
            raise map_platform_error(e)

        expenses = [Expense.from_document(d) for d in documents]
        return compute_dashboard_stats(expenses)


def compute_dashboard_stats(expenses: List[Expense]) -> DashboardStats:
    """Counts per status, total amount and per-month / per-category groups.

    Groups keep the order in which their key was first seen.
    """
    stats = DashboardStats(total_count=len(expenses))
    by_month: Dict[str, MonthlyTotal] = {}
    by_category: Dict[str, CategoryTotal] = {}
    total = Decimal("0")

    for expense in expenses:
        if expense.status == ExpenseStatus.PENDING:
            stats.pending_count += 1
        elif expense.status == ExpenseStatus.APPROVED:
            stats.approved_count += 1
        elif expense.status == ExpenseStatus.REJECTED:
            stats.rejected_count += 1

        total += expense.amount

        month = by_month.setdefault(expense.month, MonthlyTotal(month=expense.month))
        month.total += expense.amount
        month.count += 1

        category = by_category.setdefault(expense.category, CategoryTotal(category=expense.category))
        category.total += expense.amount
        category.count += 1

    stats.total_amount = total
    stats.by_month = list(by_month.values())
    stats.by_category = list(by_category.values())
    return stats
