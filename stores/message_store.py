from typing import List, Optional

from core.errors import ServiceError
from models.message import BatchResult, Message, MessageForm
from services.message_service import MessageService
from stores.base import ERROR, Notifier, Store, remove_by_id, replace_by_id


class MessageStore(Store):
    def __init__(self, messages: MessageService, notifier: Optional[Notifier] = None) -> None:
        super().__init__(notifier)
        self.service = messages
        self.messages: List[Message] = []
        self.conversation: List[Message] = []
        self.contacts: List[str] = []
        self.unread_count = 0

    async def fetch_messages(self, user_id: str, limit: Optional[int] = None) -> None:
        async with self.loading():
            try:
                self.messages = await self.service.user_messages(user_id, limit)
            except ServiceError as e:
                self.fail(e, {401: "Session expired. Sign in again."}, "Could not load messages")
                return
        self.unread_count = await self.service.unread_count(user_id)

    async def fetch_conversation(self, user_id: str, other_id: str, limit: Optional[int] = None) -> None:
        async with self.loading():
            try:
                self.conversation = await self.service.conversation(user_id, other_id, limit)
            except ServiceError as e:
                self.fail(e, default="Could not load conversation")

    async def fetch_recent_contacts(self, user_id: str, limit: int = 10) -> None:
        try:
            self.contacts = await self.service.recent_contacts(user_id, limit)
        except ServiceError as e:
            self.fail(e, default="Could not load contacts")

    async def refresh_unread_count(self, user_id: str) -> int:
        self.unread_count = await self.service.unread_count(user_id)
        return self.unread_count

    async def send(self, sender_id: str, form: MessageForm) -> Optional[Message]:
        try:
            message = await self.service.send(sender_id, form)
        except ServiceError as e:
            self.fail(e, {400: "Message is empty or invalid"}, "Could not send message")
            return None

        self.messages = [message] + self.messages
        # Only extend the open thread when the message belongs to it
        if form.receiver_id and any(form.receiver_id in (m.sender_id, m.receiver_id) for m in self.conversation):
            self.conversation = [message] + self.conversation
        self.succeed("Message sent")
        return message

    async def mark_read(self, message_id: str) -> bool:
        try:
            message = await self.service.mark_read(message_id)
        except ServiceError as e:
            self.fail(e, {404: "Message not found"}, "Could not update message")
            return False

        was_unread = any(m.id == message_id and not m.read for m in self.messages)
        self.messages = replace_by_id(self.messages, message)
        self.conversation = replace_by_id(self.conversation, message)
        if was_unread:
            self.unread_count = max(0, self.unread_count - 1)
        return True

    async def mark_many_read(self, user_id: str, message_ids: List[str]) -> BatchResult:
        result = await self.service.mark_many_read(message_ids)
        if result.failed:
            self.notify(ERROR, f"{result.failed} of {result.total} messages could not be marked as read")
        # Which items failed is unknown, so reload instead of patching
        await self.fetch_messages(user_id)
        return result

    async def search(self, user_id: str, text: str, limit: Optional[int] = None) -> List[Message]:
        try:
            return await self.service.search(user_id, text, limit)
        except ServiceError as e:
            self.fail(e, default="Search failed")
            return []

    async def delete(self, message_id: str) -> bool:
        try:
            await self.service.delete(message_id)
        except ServiceError as e:
            self.fail(e, {404: "Message not found"}, "Could not delete message")
            return False

        self.messages = remove_by_id(self.messages, message_id)
        self.conversation = remove_by_id(self.conversation, message_id)
        self.succeed("Message deleted")
        return True
