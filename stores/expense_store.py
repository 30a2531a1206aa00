import logging
from typing import Any, Dict, List, Optional

from core.errors import ServiceError
from models.expense import DashboardStats, Expense, ExpenseForm, ExpenseStatus
from models.file import FileUpload
from models.user import UserProfile
from services.expense_service import ExpenseService, compute_dashboard_stats
from services.notification_service import NotificationService
from stores.base import Notifier, Store, remove_by_id, replace_by_id

logger = logging.getLogger(__name__)

# Notices Shared By The Review Actions
_REVIEW_ERRORS = {
    401: "Session expired. Sign in again.",
    403: "Not allowed to review expenses",
    404: "Expense not found",
    400: "A rejection reason is required",
}


class ExpenseStore(Store):
    """
    Cached expense list and dashboard stats.

    Every successful mutation refreshes the stats so the dashboard never
    shows totals computed from a stale cache.
    """

    def __init__(
        self,
        expenses: ExpenseService,
        notifications: Optional[NotificationService] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        super().__init__(notifier)
        self.service = expenses
        self.notifications = notifications
        self.expenses: List[Expense] = []
        self.stats: Optional[DashboardStats] = None
        # None means every user's expenses
        self.scope_user_id: Optional[str] = None

    async def fetch_expenses(self, user_id: Optional[str] = None, status: Optional[ExpenseStatus] = None) -> None:
        self.scope_user_id = user_id
        async with self.loading():
            try:
                if user_id:
                    expenses = await self.service.list_for_user(user_id)
                    if status:
                        expenses = [e for e in expenses if e.status == status]
                else:
                    expenses = await self.service.list_all(status=status)
            except ServiceError as e:
                self.fail(
                    e,
                    {401: "Session expired. Sign in again."},
                    "Could not load expenses. Check your connection.",
                )
                return
            self.expenses = expenses

    async def fetch_dashboard_stats(self) -> None:
        async with self.loading():
            try:
                self.stats = await self.service.dashboard_stats(self.scope_user_id)
            except ServiceError as e:
                self.error = str(e)
                logger.warning(f"Dashboard stats failed, computing from cached expenses: {e}")
                self.stats = compute_dashboard_stats(self.expenses)

    async def create_expense(self, owner_id: str, form: ExpenseForm) -> Optional[Expense]:
        try:
            expense = await self.service.create(owner_id, form)
        except ServiceError as e:
            self.fail(e, {401: "Not allowed to create expenses", 400: "Expense data is invalid"}, "Could not create expense")
            return None

        self.expenses = [expense] + self.expenses
        self.succeed("Expense created")
        await self.fetch_dashboard_stats()
        return expense

    async def update_expense(self, expense_id: str, partial: Dict[str, Any]) -> bool:
        try:
            expense = await self.service.update(expense_id, partial)
        except ServiceError as e:
            self.fail(e, {404: "Expense not found", 400: "Expense data is invalid"}, "Could not update expense")
            return False

        self.expenses = replace_by_id(self.expenses, expense)
        self.succeed("Expense updated")
        await self.fetch_dashboard_stats()
        return True

    async def upload_receipt(self, expense_id: str, file: FileUpload) -> bool:
        try:
            expense = await self.service.upload_receipt(expense_id, file)
        except ServiceError as e:
            self.fail(e, {404: "Expense not found", 400: str(e)}, "Could not upload receipt")
            return False

        self.expenses = replace_by_id(self.expenses, expense)
        self.succeed("Receipt attached")
        return True

    async def _notify_owner(self, expense: Expense) -> None:
        if self.notifications is None:
            return
        try:
            await self.notifications.send_expense_status_notification(
                expense.user_id,
                expense.id,
                expense.status,
                expense.amount,
                expense.category.value,
                rejection_reason=expense.rejection_reason,
            )
        except ServiceError as e:
            logger.warning(f"Could not notify {expense.user_id} about expense {expense.id}: {e}")

    async def approve_expense(self, expense_id: str, reviewer: UserProfile) -> bool:
        try:
            expense = await self.service.approve(expense_id, reviewer.id)
        except ServiceError as e:
            self.fail(e, _REVIEW_ERRORS, "Could not approve expense")
            return False

        self.expenses = replace_by_id(self.expenses, expense)
        self.succeed("Expense approved")
        await self._notify_owner(expense)
        await self.fetch_dashboard_stats()
        return True

    async def reject_expense(self, expense_id: str, reviewer: UserProfile, reason: str) -> bool:
        try:
            expense = await self.service.reject(expense_id, reviewer.id, reason)
        except ServiceError as e:
            self.fail(e, _REVIEW_ERRORS, "Could not reject expense")
            return False

        self.expenses = replace_by_id(self.expenses, expense)
        self.succeed("Expense rejected")
        await self._notify_owner(expense)
        await self.fetch_dashboard_stats()
        return True

    async def delete_expense(self, expense_id: str, requested_by: Optional[UserProfile] = None) -> bool:
        try:
            await self.service.delete(expense_id, requested_by=requested_by)
        except ServiceError as e:
            self.fail(
                e,
                {403: "Not allowed to delete this expense", 404: "Expense not found"},
                "Could not delete expense",
            )
            return False

        self.expenses = remove_by_id(self.expenses, expense_id)
        self.succeed("Expense deleted")
        await self.fetch_dashboard_stats()
        return True
