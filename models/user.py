from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from models.base import DocumentModel
from utils.datetime_helpers import format_utc_datetime


# Enum Limiting Roles To The Three Known Ones
class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


# Roles Allowed To Approve / Reject Expenses
REVIEWER_ROLES = {UserRole.ADMIN, UserRole.MANAGER}


class UserProfile(DocumentModel):
    name: str = ""
    email: str
    role: UserRole = UserRole.EMPLOYEE
    employee_code: str = Field(alias="employeeId")
    is_active: bool = Field(default=True, alias="isActive")
    phone: Optional[str] = None
    tax_id: Optional[str] = Field(default=None, alias="nif")
    avatar_id: Optional[str] = Field(default=None, alias="avatarUrl")
    entry_date: Optional[datetime] = Field(default=None, alias="entryDate")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    # Profiles created by the mobile app store "" instead of leaving optional fields out
    @field_validator("phone", "tax_id", "avatar_id", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_serializer("entry_date", "created_at", "updated_at", when_used="json")
    def serialize_timestamps(self, dt: Optional[datetime]) -> Optional[str]:
        """Ensure timestamps are formatted as UTC with Z suffix"""
        return format_utc_datetime(dt)

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEWER_ROLES


# Fields A User May Change On Their Own Profile
class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    avatar_id: Optional[str] = None

    def to_storage(self) -> dict:
        stored_names = {"name": "name", "phone": "phone", "tax_id": "nif", "avatar_id": "avatarUrl"}
        return {stored_names[k]: v for k, v in self.model_dump(exclude_unset=True).items()}
