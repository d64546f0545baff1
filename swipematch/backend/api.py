"""FastAPI endpoints for swipes, matches, chat and the realtime websocket."""

from __future__ import annotations

import json
import logging
from functools import partial
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .cache import KeyValueCache, create_cache
from .config import BackendSettings, load_settings
from .errors import ChannelDeadError, SwipeMatchError
from .events import ChatFrame, ConnectedEvent, ErrorEvent, TypingFrame, decode_client_frame, encode_event
from .fanout import FanoutDispatcher
from .models import MessageType
from .presence import PresenceSet, create_presence
from .registry import ConnectionRegistry, WebSocketChannel
from .security import issue_session_token, resolve_party_id
from .services import ChatService, PresenceService, SwipeService
from .store import SwipeStore, create_store

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "conflict": 409,
    "invalid_request": 400,
    "not_authorized": 403,
    "not_found": 404,
    "transient_store": 503,
}


class CreatePartyRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class CreatePartyResponse(BaseModel):
    party_id: int
    token: str


class SwipeRequest(BaseModel):
    target_id: int
    direction: str


class SwipeResponse(BaseModel):
    is_match: bool
    match: dict[str, Any] | None = None


class SendMessageRequest(BaseModel):
    match_id: int
    content: str = Field(min_length=1, max_length=1000)
    message_type: MessageType = MessageType.TEXT
    media_url: str | None = None


class TypingRequest(BaseModel):
    match_id: int
    is_typing: bool


def create_app(
    store: SwipeStore | None = None,
    cache: KeyValueCache | None = None,
    presence: PresenceSet | None = None,
    settings: BackendSettings | None = None,
) -> FastAPI:
    app_settings = settings if settings is not None else load_settings()
    swipe_store = store if store is not None else create_store(app_settings.database_url)
    kv_cache = cache if cache is not None else create_cache(app_settings.redis_url)
    presence_set = presence if presence is not None else create_presence(app_settings.redis_url)

    registry = ConnectionRegistry(presence=presence_set)
    dispatcher = FanoutDispatcher(
        registry=registry,
        store=swipe_store,
        send_timeout_seconds=app_settings.send_timeout_seconds,
    )
    service_options = {
        "cache_ttl_seconds": app_settings.cache_ttl_seconds,
        "retry_attempts": app_settings.store_retry_attempts,
        "retry_backoff_seconds": app_settings.store_retry_backoff_seconds,
    }
    swipe_service = SwipeService(swipe_store, kv_cache, dispatcher, **service_options)
    chat_service = ChatService(swipe_store, kv_cache, dispatcher, **service_options)
    presence_service = PresenceService(swipe_store, presence_set, dispatcher)
    dispatcher.on_party_offline = partial(presence_service.announce, online=False)

    app = FastAPI(title="Swipematch API", version="0.1.0")
    app.state.registry = registry
    app.state.dispatcher = dispatcher

    @app.exception_handler(SwipeMatchError)
    async def handle_domain_error(request: Request, exc: SwipeMatchError) -> JSONResponse:
        return JSONResponse(
            status_code=_STATUS_BY_KIND.get(exc.kind, 500),
            content={"kind": exc.kind, "detail": exc.detail},
        )

    def current_party(authorization: str | None = Header(default=None)) -> int:
        if authorization is None or not authorization.lower().startswith("bearer "):
            raise HTTPException(status_code=401, detail="Missing bearer token")
        party_id = resolve_party_id(authorization.split(" ", 1)[1].strip(), app_settings.session_secret)
        if party_id is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        return party_id

    @app.post("/api/parties", response_model=CreatePartyResponse)
    def create_party(payload: CreatePartyRequest) -> CreatePartyResponse:
        party = swipe_store.create_party(name=payload.name)
        return CreatePartyResponse(
            party_id=party.party_id,
            token=issue_session_token(party.party_id, app_settings.session_secret),
        )

    @app.get("/api/profiles")
    async def list_profiles(
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
        party_id: int = Depends(current_party),
    ) -> dict[str, Any]:
        profiles = await swipe_service.list_candidates(party_id, limit=limit, offset=offset)
        return {"profiles": profiles, "count": len(profiles), "has_more": len(profiles) == limit}

    @app.post("/api/swipes", response_model=SwipeResponse)
    async def post_swipe(payload: SwipeRequest, party_id: int = Depends(current_party)) -> SwipeResponse:
        outcome = await swipe_service.swipe(party_id, payload.target_id, payload.direction)
        return SwipeResponse(
            is_match=outcome.is_match,
            match=outcome.match.to_dict() if outcome.match is not None else None,
        )

    @app.get("/api/matches")
    async def list_matches(party_id: int = Depends(current_party)) -> dict[str, Any]:
        matches = await swipe_service.list_matches(party_id)
        return {"matches": matches, "count": len(matches)}

    @app.get("/api/matches/{match_id}")
    async def get_match(match_id: int, party_id: int = Depends(current_party)) -> dict[str, Any]:
        match = await swipe_service.get_match(match_id, party_id)
        return match.to_dict()

    @app.get("/api/messages")
    async def list_messages(
        match_id: int,
        page: int = Query(default=0, ge=0),
        limit: int = Query(default=50, ge=1, le=100),
        party_id: int = Depends(current_party),
    ) -> dict[str, Any]:
        messages = await chat_service.list_messages(match_id, party_id, page=page, limit=limit)
        return {
            "messages": messages,
            "count": len(messages),
            "page": page,
            "limit": limit,
            "has_more": len(messages) == limit,
        }

    @app.post("/api/messages", status_code=201)
    async def post_message(payload: SendMessageRequest, party_id: int = Depends(current_party)) -> dict[str, Any]:
        message = await chat_service.send_message(
            sender_id=party_id,
            match_id=payload.match_id,
            content=payload.content,
            message_type=payload.message_type,
            media_url=payload.media_url,
        )
        return message.to_dict()

    @app.delete("/api/messages/{message_id}")
    async def delete_message(message_id: int, party_id: int = Depends(current_party)) -> dict[str, str]:
        await chat_service.delete_message(message_id, party_id)
        return {"message": "Message deleted"}

    @app.get("/api/messages/{match_id}/latest")
    async def latest_message(match_id: int, party_id: int = Depends(current_party)) -> dict[str, Any] | None:
        message = await chat_service.latest_message(match_id, party_id)
        return message.to_dict() if message is not None else None

    @app.get("/api/messages/{match_id}/unread-count")
    async def unread_count(match_id: int, party_id: int = Depends(current_party)) -> dict[str, int]:
        return {"unread_count": await chat_service.unread_count(match_id, party_id)}

    @app.post("/api/messages/typing")
    async def post_typing(payload: TypingRequest, party_id: int = Depends(current_party)) -> dict[str, str]:
        await chat_service.send_typing(payload.match_id, party_id, payload.is_typing)
        return {"message": "Typing indicator sent"}

    @app.get("/api/presence")
    def list_presence(party_id: int = Depends(current_party)) -> dict[str, Any]:
        return {"online": presence_service.online_parties()}

    @app.get("/api/presence/{other_party_id}")
    def get_presence(other_party_id: int, party_id: int = Depends(current_party)) -> dict[str, Any]:
        return {"party_id": other_party_id, "online": presence_service.is_online(other_party_id)}

    async def handle_frame(party_id: int, channel: WebSocketChannel, raw: str) -> None:
        try:
            frame = decode_client_frame(json.loads(raw))
            match frame:
                case ChatFrame():
                    await chat_service.send_message(
                        sender_id=party_id,
                        match_id=frame.match_id,
                        content=frame.content,
                        message_type=frame.message_type,
                        media_url=frame.media_url,
                    )
                case TypingFrame():
                    await chat_service.send_typing(frame.match_id, party_id, frame.is_typing)
        except json.JSONDecodeError:
            logger.info("Rejected non-JSON frame from party %d", party_id)
            await channel.send_json(encode_event(ErrorEvent(kind="invalid_request", detail="Frame is not JSON")))
        except SwipeMatchError as exc:
            logger.info("Rejected frame from party %d: %s", party_id, exc.detail)
            await channel.send_json(encode_event(ErrorEvent(kind=exc.kind, detail=exc.detail)))

    @app.websocket("/ws")
    async def realtime_ws(websocket: WebSocket) -> None:
        party_id = resolve_party_id(websocket.query_params.get("token"), app_settings.session_secret)
        if party_id is None:
            await websocket.close(code=1008)
            return

        await websocket.accept()
        channel = WebSocketChannel(websocket)
        first = await registry.register(party_id, channel)
        try:
            online_matches = await run_in_threadpool(presence_service.online_counterparts, party_id)
            await channel.send_json(encode_event(ConnectedEvent(party_id=party_id, online_matches=online_matches)))
            if first:
                await presence_service.announce(party_id, online=True)
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    logger.info("Rejected binary frame from party %d", party_id)
                    await channel.send_json(
                        encode_event(ErrorEvent(kind="invalid_request", detail="Binary frames are not supported"))
                    )
                    continue
                await handle_frame(party_id, channel, raw)
        except (WebSocketDisconnect, ChannelDeadError):
            logger.debug("Channel %s of party %d disconnected", channel.channel_id, party_id)
        finally:
            last = await registry.unregister(party_id, channel)
            if last:
                await presence_service.announce(party_id, online=False)

    return app


app = create_app()
