from typing import Iterable, List, Optional

from .models import Group
from .store import DocumentStore, object_id

GROUPS = "groups"


class GroupRegistry:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def create_group(self, name: str, members: Iterable[str], creator: Optional[str] = None) -> Group:
        members = list(members)
        if creator and creator not in members:
            members.insert(0, creator)
        group = Group.build(name=name, members=members)
        group.id = str(await self.store.insert(GROUPS, group.to_document()))
        return group

    async def get_group(self, group_id: str) -> Optional[Group]:
        oid = object_id(group_id)
        if oid is None:
            return None
        doc = await self.store.find_one(GROUPS, {"_id": oid})
        return Group.from_document(doc) if doc else None

    async def find_groups_for(self, identity: str) -> List[Group]:
        docs = await self.store.find(GROUPS, {"members": identity}, sort=[("createdAt", 1), ("_id", 1)])
        return [Group.from_document(d) for d in docs]
