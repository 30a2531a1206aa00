import json
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from core.errors import InvalidInput
from core.platform import Document


def decode_json_field(value: Any) -> Any:
    """Stored list/map fields may arrive JSON-encoded; decode them if so."""
    if isinstance(value, str):
        if not value.strip():
            return None
        return json.loads(value)
    return value


class DocumentModel(BaseModel):
    """A record parsed from a platform document.

    Field aliases are the stored field names; attribute names are ours.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str

    @classmethod
    def from_document(cls, document: Document):
        payload = dict(document.data)
        payload["id"] = document.id

        # Fall back to the platform's own timestamps when the fields were never written
        if "created_at" in cls.model_fields and payload.get("createdAt") is None:
            payload["createdAt"] = document.created_at
        if "updated_at" in cls.model_fields and payload.get("updatedAt") is None:
            payload["updatedAt"] = document.updated_at

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise InvalidInput(
                f"Malformed {cls.__name__} document {document.id}: {e.error_count()} invalid field(s)",
                cause=e,
            )
