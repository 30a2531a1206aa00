from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer

from core.platform import BlobInfo
from utils.datetime_helpers import format_utc_datetime


class UploadedFile(BaseModel):
    id: str
    name: str
    mime_type: str
    size: int
    created_at: Optional[datetime] = None

    @classmethod
    def from_blob(cls, blob: BlobInfo) -> "UploadedFile":
        return cls(
            id=blob.id,
            name=blob.name,
            mime_type=blob.mime_type,
            size=blob.size,
            created_at=blob.created_at,
        )

    @field_serializer("created_at", when_used="json")
    def serialize_created_at(self, dt: Optional[datetime]) -> Optional[str]:
        return format_utc_datetime(dt)


# A File Waiting To Be Uploaded
class FileUpload(BaseModel):
    name: str
    mime_type: str
    content: bytes = Field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)


class UploadReport(BaseModel):
    uploaded: List[UploadedFile] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


class StorageStats(BaseModel):
    total_files: int = 0
    total_size: int = 0
    file_types: Dict[str, int] = Field(default_factory=dict)
    folders: Dict[str, int] = Field(default_factory=dict)
