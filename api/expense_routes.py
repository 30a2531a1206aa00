import logging
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel

from core.deps import get_current_user, get_services, http_error, require_reviewer_role
from core.errors import ServiceError
from models.expense import DashboardStats, Expense, ExpenseForm, ExpenseStatus
from models.file import FileUpload
from models.user import UserProfile
from services.registry import Services

logger = logging.getLogger(__name__)

# Define Router
router = APIRouter()


class RejectRequest(BaseModel):
    reason: str


def ensure_can_view(expense: Expense, user: UserProfile) -> None:
    if expense.user_id != user.id and not user.is_reviewer:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only access your own expenses",
        )


async def notify_owner(services: Services, expense: Expense) -> None:
    """Tell the owner about the review outcome. A failure here never fails the review."""
    try:
        await services.notifications.send_expense_status_notification(
            expense.user_id,
            expense.id,
            expense.status,
            expense.amount,
            expense.category.value,
            rejection_reason=expense.rejection_reason,
        )
    except ServiceError as e:
        logger.warning(f"Could not notify {expense.user_id} about expense {expense.id}: {e}")


async def _load(services: Services, expense_id: str, user: UserProfile) -> Expense:
    try:
        expense = await services.expenses.get_one(expense_id)
    except ServiceError as e:
        raise http_error(e)
    ensure_can_view(expense, user)
    return expense


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_expense(
    form: ExpenseForm,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> Expense:
    try:
        return await services.expenses.create(current_user.id, form)
    except ServiceError as e:
        raise http_error(e)


@router.get("/mine")
async def list_my_expenses(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
    month: Optional[str] = None,
) -> List[Expense]:
    try:
        if month:
            return await services.expenses.list_for_month(current_user.id, month)
        return await services.expenses.list_for_user(current_user.id, limit)
    except ServiceError as e:
        raise http_error(e)


@router.get("")
async def list_expenses(
    reviewer: Annotated[UserProfile, Depends(require_reviewer_role)],
    services: Annotated[Services, Depends(get_services)],
    limit: Optional[int] = None,
    status_filter: Annotated[Optional[ExpenseStatus], Query(alias="status")] = None,
) -> List[Expense]:
    try:
        return await services.expenses.list_all(limit=limit, status=status_filter)
    except ServiceError as e:
        raise http_error(e)


@router.get("/stats")
async def dashboard_stats(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    user_id: Optional[str] = None,
) -> DashboardStats:
    # Employees Only See Their Own Numbers
    if not current_user.is_reviewer:
        user_id = current_user.id
    try:
        return await services.expenses.dashboard_stats(user_id)
    except ServiceError as e:
        raise http_error(e)


@router.get("/{expense_id}")
async def get_expense(
    expense_id: str,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> Expense:
    return await _load(services, expense_id, current_user)


@router.patch("/{expense_id}")
async def update_expense(
    expense_id: str,
    partial: Dict[str, Any],
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> Expense:
    expense = await _load(services, expense_id, current_user)
    if expense.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the owner can edit an expense",
        )
    try:
        return await services.expenses.update(expense_id, partial)
    except ServiceError as e:
        raise http_error(e)


@router.post("/{expense_id}/receipt")
async def upload_receipt(
    expense_id: str,
    receipt: Annotated[UploadFile, File(description="Photo or PDF of the receipt")],
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> Expense:
    expense = await _load(services, expense_id, current_user)
    if expense.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the owner can attach a receipt",
        )

    file = FileUpload(
        name=receipt.filename or "receipt",
        mime_type=receipt.content_type or "application/octet-stream",
        content=await receipt.read(),
    )
    try:
        return await services.expenses.upload_receipt(expense_id, file)
    except ServiceError as e:
        raise http_error(e)


@router.post("/{expense_id}/approve")
async def approve_expense(
    expense_id: str,
    reviewer: Annotated[UserProfile, Depends(require_reviewer_role)],
    services: Annotated[Services, Depends(get_services)],
) -> Expense:
    try:
        expense = await services.expenses.approve(expense_id, reviewer.id)
    except ServiceError as e:
        raise http_error(e)
    await notify_owner(services, expense)
    return expense


@router.post("/{expense_id}/reject")
async def reject_expense(
    expense_id: str,
    body: RejectRequest,
    reviewer: Annotated[UserProfile, Depends(require_reviewer_role)],
    services: Annotated[Services, Depends(get_services)],
) -> Expense:
    try:
        expense = await services.expenses.reject(expense_id, reviewer.id, body.reason)
    except ServiceError as e:
        raise http_error(e)
    await notify_owner(services, expense)
    return expense


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    expense_id: str,
    current_user: Annotated[UserProfile, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
) -> None:
    try:
        await services.expenses.delete(expense_id, requested_by=current_user)
    except ServiceError as e:
        raise http_error(e)
