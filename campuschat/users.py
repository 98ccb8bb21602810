import logging
from typing import Iterable, List, Optional

from pymongo.errors import DuplicateKeyError

from .errors import Conflict, NotFound, ValidationError
from .models import Privacy, User
from .store import DocumentStore

logger = logging.getLogger(__name__)

USERS = "users"


def normalize_identity(identity: Optional[str]) -> Optional[str]:
    """Identities are stored stripped; lookups must agree with registration."""
    return identity.strip() if isinstance(identity, str) else identity


class IdentityStore:
    """Durable user records keyed by identity (phone number or username)."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def setup(self) -> None:
        await self.store.ensure_unique(USERS, "identity")

    async def register(self, identity: str, password_hash: str,
                       display_name: Optional[str] = None, avatar: Optional[str] = None) -> User:
        user = User.build(identity=identity, password=password_hash,
                          display_name=display_name or None, avatar=avatar)
        if await self.store.find_one(USERS, {"identity": user.identity}) is not None:
            raise Conflict(f"{user.identity} already registered")
        try:
            user.id = str(await self.store.insert(USERS, user.to_document()))
        except DuplicateKeyError:
            # lost a race with a concurrent registration
            raise Conflict(f"{user.identity} already registered")
        logger.info("registered %s", user.identity)
        return user

    async def get(self, identity: str) -> Optional[User]:
        identity = normalize_identity(identity)
        if not identity:
            return None
        doc = await self.store.find_one(USERS, {"identity": identity})
        return User.from_document(doc) if doc else None

    async def update_profile(self, identity: str, display_name: Optional[str] = None,
                             password_hash: Optional[str] = None, avatar: Optional[str] = None,
                             privacy: Optional[str] = None) -> User:
        identity = normalize_identity(identity)
        changes = {}
        if display_name:
            changes["displayName"] = display_name
        if password_hash:
            changes["password"] = password_hash
        if avatar:
            changes["avatar"] = avatar
        if privacy:
            try:
                changes["privacy"] = Privacy(privacy).value
            except ValueError:
                raise ValidationError(f"privacy must be one of {[p.value for p in Privacy]}")
        if changes:
            matched = await self.store.update_one(USERS, {"identity": identity}, changes)
        else:
            matched = await self.store.find_one(USERS, {"identity": identity}) is not None
        if not matched:
            raise NotFound(f"no user {identity}")
        return await self.get(identity)

    async def find_registered(self, identities: Iterable[str]) -> List[User]:
        wanted = [normalize_identity(i) for i in identities if isinstance(i, str) and i.strip()]
        if not wanted:
            return []
        docs = await self.store.find(USERS, {"identity": {"$in": wanted}})
        return [User.from_document(d) for d in docs]
