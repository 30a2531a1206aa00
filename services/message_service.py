"""
Messaging service.

There is no conversation entity: threads, inboxes and contact lists are all
assembled here from the flat messages collection. The query layer can't OR
across fields or test "null or equals", so each view runs one query per
branch and merges the results.
"""

import asyncio
import logging
import math
from typing import Dict, Iterable, List, Optional

from core.errors import map_platform_error
from core.platform import Platform, Query
from models.message import BatchResult, Message, MessageForm
from utils.datetime_helpers import utc_now

logger = logging.getLogger(__name__)

ORDER_FIELD = "timestamp"

# How Far Back recent_contacts Looks In Each Direction
CONTACTS_WINDOW = 50
DEFAULT_CONTACTS_LIMIT = 10


def half_limit(limit: Optional[int]) -> Optional[int]:
    """Per-direction limit for two-branch views: ceil(limit / 2)."""
    if not limit:
        return None
    return math.ceil(limit / 2)


def merge_messages(*batches: Iterable[Message]) -> List[Message]:
    """Union the batches, keep one message per id (later batches win) and sort newest first."""
    unique: Dict[str, Message] = {}
    for batch in batches:
        for message in batch:
            unique[message.id] = message
    return sorted(unique.values(), key=lambda m: m.timestamp, reverse=True)


class MessageService:
    def __init__(self, platform: Platform) -> None:
        self.platform = platform
        self.collection = platform.collections.messages

    async def _query(self, query: Query) -> List[Message]:
        if query.order_desc is None:
            query.order_desc = ORDER_FIELD
        documents = await self.platform.documents.list(self.collection, query)
        return [Message.from_document(d) for d in documents]

    async def send(self, sender_id: str, form: MessageForm) -> Message:
        data = {
            "senderId": sender_id,
            # Stored explicitly so broadcasts match the is-null query
            "receiverId": form.receiver_id or None,
            "content": form.content,
            "attachments": form.encoded_attachments(),
            "read": False,
            "timestamp": utc_now(),
        }
        try:
            document = await self.platform.documents.create(self.collection, None, data)
        except Exception as e:
            logger.error(f"Send message error from {sender_id}: {e}")
            raise map_platform_error(e)
        return Message.from_document(document)

    async def get_one(self, message_id: str) -> Message:
        try:
            document = await self.platform.documents.get(self.collection, message_id)
        except Exception as e:
            logger.error(f"Get message error for {message_id}: {e}")
            raise map_platform_error(e)
        return Message.from_document(document)

    async def list_all(self, limit: Optional[int] = None) -> List[Message]:
        try:
            return await self._query(Query(limit=limit))
        except Exception as e:
            logger.error(f"Get all messages error: {e}")
            raise map_platform_error(e)

    async def delete(self, message_id: str) -> bool:
        try:
            await self.platform.documents.delete(self.collection, message_id)
        except Exception as e:
            logger.error(f"Delete message error for {message_id}: {e}")
            raise map_platform_error(e)
        return True

    # --- Aggregated Views ---

    async def user_messages(self, user_id: str, limit: Optional[int] = None) -> List[Message]:
        """Everything the user sent, received or could see as a broadcast, newest first.

        Each branch is limited independently, so the merged list can hold up
        to three times limit entries.
        """
        limit = limit or None
        try:
            sent, received, broadcast = await asyncio.gather(
                self._query(Query(equals={"senderId": user_id}, limit=limit)),
                self._query(Query(equals={"receiverId": user_id}, limit=limit)),
                self._query(Query(is_null=["receiverId"], limit=limit)),
            )
        except Exception as e:
            logger.error(f"Get user messages error for {user_id}: {e}")
            raise map_platform_error(e)

        return merge_messages(sent, received, broadcast)

    async def conversation(self, user_a: str, user_b: str, limit: Optional[int] = None) -> List[Message]:
        """
        Messages exchanged between two users, newest first.

        Each direction fetches ceil(limit / 2) messages and the other direction
        never backfills, so a one-sided thread can come back short of limit.
        """
        per_direction = half_limit(limit)
        try:
            a_to_b, b_to_a = await asyncio.gather(
                self._query(Query(equals={"senderId": user_a, "receiverId": user_b}, limit=per_direction)),
                self._query(Query(equals={"senderId": user_b, "receiverId": user_a}, limit=per_direction)),
            )
        except Exception as e:
            logger.error(f"Get conversation error for {user_a}/{user_b}: {e}")
            raise map_platform_error(e)

        messages = sorted(a_to_b + b_to_a, key=lambda m: m.timestamp, reverse=True)
        return messages[:limit] if limit else messages

    async def search(self, user_id: str, text: str, limit: Optional[int] = None) -> List[Message]:
        per_direction = half_limit(limit)
        search = ("content", text)
        try:
            sent, received = await asyncio.gather(
                self._query(Query(equals={"senderId": user_id}, search=search, limit=per_direction)),
                self._query(Query(equals={"receiverId": user_id}, search=search, limit=per_direction)),
            )
        except Exception as e:
            logger.error(f"Search messages error for {user_id}: {e}")
            raise map_platform_error(e)

        messages = merge_messages(sent, received)
        return messages[:limit] if limit else messages

    async def recent_contacts(self, user_id: str, limit: int = DEFAULT_CONTACTS_LIMIT) -> List[str]:
        """Ids of the people the user last exchanged messages with.

        Only the latest CONTACTS_WINDOW messages in each direction are
        scanned, so older contacts can be missing.
        """
        try:
            sent, received = await asyncio.gather(
                self._query(Query(equals={"senderId": user_id}, limit=CONTACTS_WINDOW)),
                self._query(Query(equals={"receiverId": user_id}, limit=CONTACTS_WINDOW)),
            )
        except Exception as e:
            logger.error(f"Get recent contacts error for {user_id}: {e}")
            raise map_platform_error(e)

        contacts: List[str] = []
        for message in sent + received:
            for party in (message.sender_id, message.receiver_id):
                if party and party != user_id and party not in contacts:
                    contacts.append(party)
        return contacts[:limit]

    # --- Read State ---

    async def unread_count(self, user_id: str) -> int:
        """Unread direct messages plus unread broadcasts; 0 if anything goes wrong."""
        try:
            received, broadcast = await asyncio.gather(
                self.platform.documents.list(
                    self.collection, Query(equals={"receiverId": user_id, "read": False})
                ),
                self.platform.documents.list(
                    self.collection, Query(equals={"read": False}, is_null=["receiverId"])
                ),
            )
        except Exception as e:
            logger.error(f"Get unread count error for {user_id}: {e}")
            return 0
        return len(received) + len(broadcast)

    async def mark_read(self, message_id: str) -> Message:
        try:
            document = await self.platform.documents.update(self.collection, message_id, {"read": True})
        except Exception as e:
            logger.error(f"Mark as read error for {message_id}: {e}")
            raise map_platform_error(e)
        return Message.from_document(document)

    async def mark_many_read(self, message_ids: List[str]) -> BatchResult:
        """Mark every message read independently and count how many succeeded."""
        results = await asyncio.gather(
            *(self.mark_read(message_id) for message_id in message_ids), return_exceptions=True
        )
        successful = sum(1 for r in results if not isinstance(r, BaseException))
        if successful < len(message_ids):
            logger.warning(f"Marked {successful}/{len(message_ids)} messages as read")
        return BatchResult(successful=successful, total=len(message_ids))
