import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import PyMongoError

from .auth import SessionGate
from .config import Settings
from .conversations import ConversationStore
from .dispatch import Dispatcher
from .errors import ChatError
from .groups import GroupRegistry
from .presence import PresenceRouter
from .realtime import websocket_endpoint
from .routes import setup_routes
from .service import AccountService, ChatService
from .store import DocumentStore, open_store
from .uploads import URL_PREFIX, UploadStore
from .users import IdentityStore

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[DocumentStore] = None) -> FastAPI:
    """Build the application with its own store, router and services.

    Nothing is module-global: every component is created here, kept on
    ``app.state`` and torn down by the lifespan handler.
    """
    settings = settings or Settings.from_env()
    store = store or open_store(settings)

    users = IdentityStore(store)
    conversations = ConversationStore(store, settings.conversation_limit, settings.feed_limit)
    groups = GroupRegistry(store)
    presence = PresenceRouter(settings.push_timeout_seconds)
    dispatcher = Dispatcher(presence, groups)
    gate = SessionGate(settings.jwt_secret, settings.token_ttl_seconds)
    uploads = UploadStore(settings.uploads_dir)
    chat = ChatService(users, conversations, groups, dispatcher)
    accounts = AccountService(users, gate)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # StoreUnavailable propagates and aborts startup
        await store.ping()
        await users.setup()
        logger.info("campuschat backend ready (identity field: %s)", settings.identity_field)
        yield
        await presence.close()
        store.close()
        logger.info("campuschat backend stopped")

    app = FastAPI(title="campuschat", lifespan=lifespan)

    # Allow the mobile/web frontends to call REST endpoints
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChatError)
    async def chat_error_handler(_request: Request, exc: ChatError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "validation_error", "message": str(exc.errors())})

    @app.exception_handler(PyMongoError)
    async def store_error_handler(request: Request, exc: PyMongoError):
        logger.exception("store error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "server_error", "message": "Server error"})

    app.include_router(setup_routes(settings, gate, chat, accounts, uploads, presence))
    app.add_api_websocket_route("/ws", websocket_endpoint)
    app.mount(URL_PREFIX, StaticFiles(directory=settings.uploads_dir), name="uploads")

    app.state.settings = settings
    app.state.store = store
    app.state.gate = gate
    app.state.router = presence
    app.state.dispatcher = dispatcher
    app.state.chat = chat
    app.state.accounts = accounts

    return app
