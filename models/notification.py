import json
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from models.base import DocumentModel, decode_json_field
from utils.datetime_helpers import format_utc_datetime


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Notification(DocumentModel):
    title: str
    content: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    # None means global
    target_users: Optional[List[str]] = Field(default=None, alias="targetUsers")
    read_by: Dict[str, bool] = Field(default_factory=dict, alias="readBy")
    date: datetime
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    @field_validator("target_users", mode="before")
    @classmethod
    def decode_targets(cls, value):
        try:
            decoded = decode_json_field(value)
        except json.JSONDecodeError:
            # Unreadable target list reaches nobody
            return []
        if decoded is not None and not isinstance(decoded, list):
            return []
        return decoded

    @field_validator("read_by", mode="before")
    @classmethod
    def decode_read_by(cls, value):
        try:
            decoded = decode_json_field(value)
        except json.JSONDecodeError:
            return {}
        if not isinstance(decoded, dict):
            return {}
        return {str(k): bool(v) for k, v in decoded.items()}

    @field_serializer("date", "expires_at", when_used="json")
    def serialize_timestamps(self, dt: Optional[datetime]) -> Optional[str]:
        """Ensure timestamps are formatted as UTC with Z suffix"""
        return format_utc_datetime(dt)

    @property
    def is_global(self) -> bool:
        return self.target_users is None

    def is_visible_to(self, user_id: str) -> bool:
        return self.is_global or user_id in self.target_users

    def is_read_by(self, user_id: str) -> bool:
        return bool(self.read_by.get(user_id))


class NotificationCreate(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    target_users: Optional[List[str]] = None
    expires_at: Optional[datetime] = None
