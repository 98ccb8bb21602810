import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import HTMLResponse

from .auth import SessionGate, extract_bearer
from .config import Settings
from .errors import Forbidden, InvalidToken, ValidationError
from .models import as_flag
from .presence import PresenceRouter
from .service import AccountService, ChatService
from .uploads import UploadStore

logger = logging.getLogger(__name__)


async def read_fields(request: Request):
    """Request body as a mapping: JSON object, urlencoded or multipart form."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("invalid json")
        if not isinstance(body, dict):
            raise ValidationError("expected a JSON object")
        return body
    return await request.form()


def _text(fields, name: str) -> Optional[str]:
    value = fields.get(name)
    if value is None or isinstance(value, str):
        return value or None
    raise ValidationError(f"{name} must be a string")


def _list(fields, name: str):
    if hasattr(fields, "getlist"):
        return fields.getlist(name)
    return fields.get(name)


def setup_routes(settings: Settings, gate: SessionGate, chat: ChatService, accounts: AccountService,
                 uploads: UploadStore, presence: PresenceRouter) -> APIRouter:
    router = APIRouter()
    identity_field = settings.identity_field

    def current_identity(authorization: Optional[str] = Header(default=None)) -> str:
        token = extract_bearer(authorization)
        if authorization and token is None:
            raise InvalidToken("Malformed authorization header")
        return gate.authenticate(token)

    def display_name_from(fields) -> Optional[str]:
        name = _text(fields, "displayName")
        if name is None and identity_field != "username":
            name = _text(fields, "username")
        return name

    # ----- liveness -----

    @router.get("/", response_class=HTMLResponse)
    async def index():
        return "<h3>campuschat backend running. Connect via WebSocket at /ws?token=YOUR_TOKEN</h3>"

    @router.get("/ping")
    async def ping():
        return {"message": "ok"}

    # ----- auth -----

    @router.post("/auth/register", status_code=201)
    async def register(request: Request) -> Dict[str, Any]:
        fields = await read_fields(request)
        identity = _text(fields, identity_field)
        password = _text(fields, "password")
        if not identity or not password:
            raise ValidationError(f"{identity_field} and password required")
        async with uploads.pending(fields.get("avatar")) as avatar:
            user = await accounts.register(identity, password, display_name_from(fields), avatar)
        return {"message": "Registered", **user.summary()}

    @router.post("/auth/login")
    async def login(request: Request) -> Dict[str, Any]:
        fields = await read_fields(request)
        token, user = await accounts.login(_text(fields, identity_field), _text(fields, "password"))
        logger.info("%s logged in", user.identity)
        return {"token": token, **user.summary()}

    # ----- messages -----

    @router.get("/api/messages/{a}/{b}")
    async def get_messages(a: str, b: str, me: str = Depends(current_identity)):
        messages = await chat.conversation(me, a, b)
        return [m.public() for m in messages]

    @router.post("/api/messages")
    async def send_message(request: Request, me: str = Depends(current_identity)):
        fields = await read_fields(request)
        async with uploads.pending(fields.get("file")) as file_url:
            message = await chat.send_message(
                me,
                receiver=_text(fields, "receiver"),
                text=_text(fields, "text"),
                is_group=as_flag(fields.get("isGroup")),
                file_url=file_url,
                sender=_text(fields, "sender"),
            )
        return message.public()

    @router.delete("/api/message/{message_id}/{identity}")
    async def delete_message(message_id: str, identity: str, me: str = Depends(current_identity)):
        if identity != me:
            raise Forbidden("can only delete your own messages")
        message = await chat.delete_message(message_id, me)
        return {"message": "Deleted", "id": message.id}

    # ----- status -----

    @router.post("/status")
    async def post_status(request: Request, me: str = Depends(current_identity)):
        fields = await read_fields(request)
        async with uploads.pending(fields.get("file")) as file_url:
            status = await chat.post_status(me, _text(fields, "text"), file_url)
        return status.public()

    @router.get("/status/feed")
    async def status_feed(me: str = Depends(current_identity)):
        return [s.public() for s in await chat.feed()]

    # ----- groups -----

    @router.post("/api/groups/create")
    async def create_group(request: Request, me: str = Depends(current_identity)):
        fields = await read_fields(request)
        group = await chat.create_group(me, _text(fields, "name"), _list(fields, "members"))
        return {"message": "Group created", "id": group.id, "group": group.public()}

    @router.get("/api/groups/{identity}")
    async def list_groups(identity: str, me: str = Depends(current_identity)):
        return [g.public() for g in await chat.groups_for(me, identity)]

    @router.get("/api/groups/{group_id}/messages")
    async def group_messages(group_id: str, me: str = Depends(current_identity)):
        return [m.public() for m in await chat.group_history(me, group_id)]

    # ----- profile & contacts -----

    @router.put("/user/{identity}/profile")
    async def update_profile(identity: str, request: Request, me: str = Depends(current_identity)):
        if identity != me:
            raise Forbidden("can only update your own profile")
        fields = await read_fields(request)
        async with uploads.pending(fields.get("avatar")) as avatar:
            user = await accounts.update_profile(
                me, identity,
                display_name=display_name_from(fields),
                password=_text(fields, "password"),
                avatar=avatar,
                privacy=_text(fields, "privacy"),
            )
        return {"message": "Updated", "user": {**user.summary(), "privacy": user.privacy}}

    @router.post("/api/contacts/sync")
    async def sync_contacts(request: Request, me: str = Depends(current_identity)):
        fields = await read_fields(request)
        contacts = _list(fields, "contacts")
        if not isinstance(contacts, list):
            raise ValidationError("contacts array required")
        registered = await accounts.sync_contacts(contacts)
        return {"registered": [u.summary() for u in registered]}

    @router.get("/api/presence/{identity}")
    async def get_presence(identity: str, me: str = Depends(current_identity)):
        count = presence.channel_count(identity)
        return {"identity": identity, "online": count > 0, "channels": count}

    return router
