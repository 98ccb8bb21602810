"""WebSocket endpoint: authenticate, bind, then serve client frames.

Server frames are ``{"type": ..., "data": ...}``. Besides the pushes made
by the dispatcher (``message``, ``message-deleted``) the socket sends
``connected`` once after the handshake and ``error`` for bad client frames.
"""
import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect
from pymongo.errors import PyMongoError

from .auth import extract_bearer
from .errors import ChatError
from .models import as_flag

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4401


class WebSocketChannel:
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._lock = asyncio.Lock()

    async def send(self, payload: dict) -> None:
        async with self._lock:
            await self.websocket.send_text(json.dumps(payload, default=str))


def error_frame(code: str, message: str) -> dict:
    return {"type": "error", "error": code, "message": message}


async def handle_frame(chat, identity: str, channel: WebSocketChannel, text: str) -> None:
    try:
        msg = json.loads(text)
    except ValueError:
        await channel.send(error_frame("validation_error", "invalid json"))
        return
    if not isinstance(msg, dict):
        await channel.send(error_frame("validation_error", "expected a JSON object"))
        return

    mtype = msg.get("type")
    if mtype != "send-message":
        await channel.send(error_frame("validation_error", f"unknown type {mtype!r}"))
        return

    data = msg.get("data")
    if not isinstance(data, dict):
        data = msg
    try:
        # the resulting "message" push doubles as the acknowledgement
        await chat.send_message(
            identity,
            receiver=data.get("receiver"),
            text=data.get("text"),
            is_group=as_flag(data.get("isGroup")),
            sender=data.get("sender"),
        )
    except ChatError as e:
        await channel.send(error_frame(e.code, e.message))
    except PyMongoError:
        logger.exception("store error while %s was sending over websocket", identity)
        await channel.send(error_frame("server_error", "Send failed"))


async def websocket_endpoint(websocket: WebSocket):
    state = websocket.app.state
    token = websocket.query_params.get("token") or extract_bearer(websocket.headers.get("authorization"))
    try:
        identity = state.gate.authenticate(token)
    except ChatError as e:
        logger.info("websocket rejected: %s", e.message)
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE)
        return

    await websocket.accept()
    channel = WebSocketChannel(websocket)
    await state.router.bind(identity, channel)
    logger.info("%s connected (%d channel(s))", identity, state.router.channel_count(identity))
    try:
        await channel.send({"type": "connected", "you": identity})
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                await channel.send(error_frame("validation_error", "expected a text frame"))
                continue
            await handle_frame(state.chat, identity, channel, text)
    except WebSocketDisconnect:
        pass
    finally:
        await state.router.unbind(identity, channel)
        logger.info("%s disconnected (%d channel(s) left)", identity, state.router.channel_count(identity))
