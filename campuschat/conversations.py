from typing import List, Optional

from .errors import Forbidden, NotFound
from .models import Message, Status
from .store import DocumentStore, object_id

MESSAGES = "messages"
STATUSES = "statuses"

NEWEST_FIRST = [("createdAt", -1), ("_id", -1)]


class ConversationStore:
    """Messages and status posts.

    Messages are immutable once inserted; the only mutation is a delete by
    the original sender. Statuses are append-only.
    """

    def __init__(self, store: DocumentStore, conversation_limit: int = 1000, feed_limit: int = 50):
        self.store = store
        self.conversation_limit = conversation_limit
        self.feed_limit = feed_limit

    async def insert_message(self, message: Message) -> Message:
        message.id = str(await self.store.insert(MESSAGES, message.to_document()))
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        oid = object_id(message_id)
        if oid is None:
            return None
        doc = await self.store.find_one(MESSAGES, {"_id": oid})
        return Message.from_document(doc) if doc else None

    async def find_conversation(self, a: str, b: str) -> List[Message]:
        """Messages between ``a`` and ``b``, oldest first.

        Bounded to the most recent ``conversation_limit`` records.
        """
        query = {"$or": [{"sender": a, "receiver": b}, {"sender": b, "receiver": a}]}
        docs = await self.store.find(MESSAGES, query, sort=NEWEST_FIRST, limit=self.conversation_limit)
        docs.reverse()
        return [Message.from_document(d) for d in docs]

    async def find_group_history(self, group_id: str) -> List[Message]:
        query = {"receiver": group_id, "isGroup": True}
        docs = await self.store.find(MESSAGES, query, sort=NEWEST_FIRST, limit=self.conversation_limit)
        docs.reverse()
        return [Message.from_document(d) for d in docs]

    async def delete_message(self, message_id: str, requester: str) -> Message:
        message = await self.get_message(message_id)
        if message is None:
            raise NotFound("Message not found")
        if message.sender != requester:
            raise Forbidden("Only the sender can delete a message")
        deleted = await self.store.delete_one(MESSAGES, {"_id": object_id(message_id), "sender": requester})
        if not deleted:
            # removed concurrently between lookup and delete
            raise NotFound("Message not found")
        return message

    async def insert_status(self, status: Status) -> Status:
        status.id = str(await self.store.insert(STATUSES, status.to_document()))
        return status

    async def feed(self) -> List[Status]:
        docs = await self.store.find(STATUSES, {}, sort=NEWEST_FIRST, limit=self.feed_limit)
        return [Status.from_document(d) for d in docs]
