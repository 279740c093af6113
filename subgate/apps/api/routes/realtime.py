from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from subgate.apps.api.deps import get_registry, get_token_service, read_session_token
from subgate.core.config import get_settings
from subgate.core.errors import InvalidToken
from subgate.services.auth.tokens import TokenService
from subgate.services.realtime.registry import ConnectionRegistry


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_channel(
    websocket: WebSocket,
    registry: ConnectionRegistry = Depends(get_registry),
    tokens: TokenService = Depends(get_token_service),
) -> None:
    """Per-identity notification channel.

    Server -> client: ``ready``, ``pong``, ``heartbeat`` and ``force-logout``.
    Client -> server: ``ping``; anything else is ignored.
    """
    await websocket.accept()
    identity_id: str | None = None
    try:
        identity_id = tokens.verify(read_session_token(websocket))
    except InvalidToken as exc:
        # Stay connected but unregistered; HTTP requests remain the access gate.
        logger.info("realtime_handshake_unauthenticated reason=%s", exc.message)

    heartbeat_s = max(1, get_settings().realtime_heartbeat_s)
    try:
        if identity_id is not None:
            await registry.register(identity_id, websocket)
            await websocket.send_json({"type": "ready", "data": {"user_id": identity_id}})
        while True:
            try:
                frame = await asyncio.wait_for(websocket.receive(), timeout=heartbeat_s)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "heartbeat"})
                continue
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000), frame.get("reason"))
            raw = frame.get("text")
            if raw is None:
                # Binary frames carry nothing the channel acts on.
                continue
            try:
                message = json.loads(raw)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("realtime_disconnected user_id=%s", identity_id)
    finally:
        if identity_id is not None:
            await registry.unregister(identity_id, websocket)
