from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from models.base import DocumentModel
from utils.datetime_helpers import format_utc_datetime

# Currency Is Fixed For Every Expense
DEFAULT_CURRENCY = "EUR"


class ExpenseCategory(str, Enum):
    MEAL = "meal"
    HOTEL = "hotel"
    FUEL = "fuel"
    TRANSPORT = "transport"
    MATERIAL = "material"
    OTHER = "other"


# pending -> approved | rejected
class ExpenseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def _to_decimal(value):
    # Firestore hands numbers back as floats; go through str to keep 10.1 == Decimal("10.1")
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class Expense(DocumentModel):
    user_id: str = Field(alias="userId")
    category: ExpenseCategory = Field(alias="type")
    amount: Decimal = Field(gt=0)
    currency: str = DEFAULT_CURRENCY
    description: str = ""
    location: str = ""
    place_details: str = Field(default="", alias="placeDetails")
    image_id: Optional[str] = Field(default=None, alias="imageId")
    status: ExpenseStatus = ExpenseStatus.PENDING
    date: datetime
    month: str = Field(pattern=r"^\d{4}-\d{2}$")
    reviewed_by: Optional[str] = Field(default=None, alias="reviewedBy")
    review_date: Optional[datetime] = Field(default=None, alias="reviewDate")
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @field_validator("amount", mode="before")
    @classmethod
    def amount_from_float(cls, value):
        return _to_decimal(value)

    @field_validator("description", "location", "place_details", mode="before")
    @classmethod
    def none_to_blank(cls, value):
        return "" if value is None else value

    @field_serializer("amount", when_used="json")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)

    @field_serializer("date", "review_date", "created_at", "updated_at", when_used="json")
    def serialize_timestamps(self, dt: Optional[datetime]) -> Optional[str]:
        """Ensure timestamps are formatted as UTC with Z suffix"""
        return format_utc_datetime(dt)

    @property
    def is_reviewed(self) -> bool:
        return self.status != ExpenseStatus.PENDING


# What The Owner Submits
class ExpenseForm(BaseModel):
    category: ExpenseCategory
    amount: Decimal = Field(gt=0)
    description: Optional[str] = None
    location: Optional[str] = None
    place_details: Optional[str] = None


# Editable Fields Of An Existing Expense (status fields deliberately absent)
class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: Optional[ExpenseCategory] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = None
    location: Optional[str] = None
    place_details: Optional[str] = None

    def to_storage(self) -> dict:
        data = {}
        for key, value in self.model_dump(exclude_unset=True).items():
            # Category and amount are required on the stored record
            if key in ("category", "amount") and value is None:
                continue
            if key == "category":
                data["type"] = value.value
            elif key == "amount":
                data["amount"] = float(value)
            elif key == "place_details":
                data["placeDetails"] = value
            else:
                data[key] = value
        return data


# --- Dashboard Aggregates ---


class MonthlyTotal(BaseModel):
    month: str
    total: Decimal = Decimal("0")
    count: int = 0

    @field_serializer("total", when_used="json")
    def serialize_total(self, total: Decimal) -> float:
        return float(total)


class CategoryTotal(BaseModel):
    category: ExpenseCategory
    total: Decimal = Decimal("0")
    count: int = 0

    @field_serializer("total", when_used="json")
    def serialize_total(self, total: Decimal) -> float:
        return float(total)


class DashboardStats(BaseModel):
    total_count: int = 0
    pending_count: int = 0
    approved_count: int = 0
    rejected_count: int = 0
    total_amount: Decimal = Decimal("0")
    by_month: List[MonthlyTotal] = Field(default_factory=list)
    by_category: List[CategoryTotal] = Field(default_factory=list)

    @field_serializer("total_amount", when_used="json")
    def serialize_total(self, total: Decimal) -> float:
        return float(total)

    def category(self, category: ExpenseCategory) -> Optional[CategoryTotal]:
        for entry in self.by_category:
            if entry.category == category:
                return entry
        return None
