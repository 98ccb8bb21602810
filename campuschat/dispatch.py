import logging
from typing import Set

from .groups import GroupRegistry
from .models import Message
from .presence import PresenceRouter

logger = logging.getLogger(__name__)

MESSAGE_EVENT = "message"
DELETED_EVENT = "message-deleted"


def frame(event: str, data: dict) -> dict:
    return {"type": event, "data": data}


class Dispatcher:
    """Fans persisted messages out to the live channels of their recipients.

    Only called after the message is stored, so a failed push costs a live
    notification and nothing else; clients recover through history fetch.
    """

    def __init__(self, router: PresenceRouter, groups: GroupRegistry):
        self.router = router
        self.groups = groups

    async def recipients(self, message: Message) -> Set[str]:
        if not message.is_group:
            targets = {message.receiver}
        else:
            group = await self.groups.get_group(message.receiver)
            if group is None:
                # no route at all, not even the sender echo
                logger.info("group %s not found; message %s stored without fan-out", message.receiver, message.id)
                return set()
            targets = set(group.members)
        targets.add(message.sender)
        return targets

    async def dispatch(self, message: Message) -> int:
        targets = await self.recipients(message)
        delivered = await self.router.push_many(sorted(targets), frame(MESSAGE_EVENT, message.public()))
        logger.debug("message %s pushed to %d channel(s) for %s", message.id, delivered, sorted(targets))
        return delivered

    async def dispatch_deleted(self, message: Message) -> int:
        return await self.router.push(message.receiver, frame(DELETED_EVENT, {"id": message.id}))
