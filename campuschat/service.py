import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from .auth import SessionGate, hash_password, verify_password
from .conversations import ConversationStore
from .dispatch import Dispatcher
from .errors import Forbidden, NotFound, Unauthorized, ValidationError
from .groups import GroupRegistry
from .models import Group, Message, Status, User, has_text
from .users import IdentityStore

logger = logging.getLogger(__name__)


class ChatService:
    """Messaging, status and group operations for an authenticated caller.

    Sends are persisted before they are dispatched; a storage failure aborts
    the send, a dispatch failure does not.
    """

    def __init__(self, users: IdentityStore, conversations: ConversationStore,
                 groups: GroupRegistry, dispatcher: Dispatcher):
        self.users = users
        self.conversations = conversations
        self.groups = groups
        self.dispatcher = dispatcher

    async def send_message(self, requester: str, receiver: Optional[str], text: Optional[str] = None,
                           is_group: bool = False, file_url: Optional[str] = None,
                           sender: Optional[str] = None) -> Message:
        if sender and sender != requester:
            raise Forbidden("sender must be the authenticated user")
        author = await self.users.get(requester)
        message = Message.build(
            sender=requester,
            receiver=receiver,
            text=text or None,
            file_url=file_url,
            is_group=is_group,
            sender_avatar=author.avatar if author else None,
        )
        message = await self.conversations.insert_message(message)
        try:
            await self.dispatcher.dispatch(message)
        except Exception:
            logger.exception("dispatch failed for stored message %s", message.id)
        return message

    async def delete_message(self, message_id: str, requester: str) -> Message:
        message = await self.conversations.delete_message(message_id, requester)
        try:
            await self.dispatcher.dispatch_deleted(message)
        except Exception:
            logger.exception("deletion notice failed for message %s", message.id)
        return message

    async def conversation(self, requester: str, a: str, b: str) -> List[Message]:
        if requester not in (a, b):
            raise Forbidden("not a participant of this conversation")
        return await self.conversations.find_conversation(a, b)

    async def group_history(self, requester: str, group_id: str) -> List[Message]:
        group = await self.groups.get_group(group_id)
        if group is None:
            raise NotFound("Group not found")
        if not group.has_member(requester):
            raise Forbidden("not a member of this group")
        return await self.conversations.find_group_history(group.id)

    async def post_status(self, requester: str, text: Optional[str] = None,
                          file_url: Optional[str] = None) -> Status:
        if not has_text(text) and not file_url:
            raise ValidationError("status needs text or a file")
        status = Status.build(user=requester, text=text or None, file_url=file_url)
        return await self.conversations.insert_status(status)

    async def feed(self) -> List[Status]:
        return await self.conversations.feed()

    async def create_group(self, requester: str, name: Optional[str], members) -> Group:
        if members is None:
            members = []
        if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
            raise ValidationError("members must be an array of identities")
        return await self.groups.create_group(name, members, creator=requester)

    async def groups_for(self, requester: str, identity: str) -> List[Group]:
        if identity != requester:
            raise Forbidden("can only list your own groups")
        return await self.groups.find_groups_for(identity)


class AccountService:
    """Registration, login, profile updates and contact discovery."""

    def __init__(self, users: IdentityStore, gate: SessionGate):
        self.users = users
        self.gate = gate

    async def register(self, identity: Optional[str], password: Optional[str],
                       display_name: Optional[str] = None, avatar: Optional[str] = None) -> User:
        if not identity or not password:
            raise ValidationError("identity and password required")
        hashed = await asyncio.to_thread(hash_password, password)
        return await self.users.register(identity, hashed, display_name, avatar)

    async def login(self, identity: Optional[str], password: Optional[str]) -> Tuple[str, User]:
        if not identity or not password:
            raise ValidationError("identity and password required")
        user = await self.users.get(identity)
        if user is None or not await asyncio.to_thread(verify_password, password, user.password):
            raise Unauthorized("Invalid credentials")
        return self.gate.issue(user.identity), user

    async def update_profile(self, requester: str, identity: str, display_name: Optional[str] = None,
                             password: Optional[str] = None, avatar: Optional[str] = None,
                             privacy: Optional[str] = None) -> User:
        if identity != requester:
            raise Forbidden("can only update your own profile")
        hashed = await asyncio.to_thread(hash_password, password) if password else None
        return await self.users.update_profile(identity, display_name=display_name, password_hash=hashed,
                                               avatar=avatar, privacy=privacy)

    async def sync_contacts(self, candidates: Iterable[str]) -> List[User]:
        return await self.users.find_registered(candidates)
