import json
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from models.base import DocumentModel, decode_json_field
from utils.datetime_helpers import format_utc_datetime


class Message(DocumentModel):
    sender_id: str = Field(alias="senderId")
    # None means the message goes to everybody
    receiver_id: Optional[str] = Field(default=None, alias="receiverId")
    content: str
    attachments: List[str] = Field(default_factory=list)
    read: bool = False
    timestamp: datetime

    @field_validator("attachments", mode="before")
    @classmethod
    def decode_attachments(cls, value):
        return decode_json_field(value) or []

    @field_serializer("timestamp", when_used="json")
    def serialize_timestamp(self, dt: datetime) -> str:
        """Ensure timestamp is formatted as UTC with Z suffix"""
        return format_utc_datetime(dt)

    @property
    def is_broadcast(self) -> bool:
        return not self.receiver_id

    def is_addressed_to(self, user_id: str) -> bool:
        return self.is_broadcast or self.receiver_id == user_id

    def other_party(self, user_id: str) -> Optional[str]:
        """The participant that is not user_id (None for broadcasts)."""
        if self.sender_id and self.sender_id != user_id:
            return self.sender_id
        if self.receiver_id and self.receiver_id != user_id:
            return self.receiver_id
        return None


class MessageForm(BaseModel):
    receiver_id: Optional[str] = None
    content: str = Field(min_length=1)
    attachments: List[str] = Field(default_factory=list)

    def encoded_attachments(self) -> Optional[str]:
        return json.dumps(self.attachments) if self.attachments else None


# Outcome Of A Batch Of Independent Updates
class BatchResult(BaseModel):
    successful: int
    total: int

    @property
    def failed(self) -> int:
        return self.total - self.successful
