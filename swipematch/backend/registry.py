"""Per-party registry of open realtime channels."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from fastapi import WebSocket
from fastapi.concurrency import run_in_threadpool

from .errors import ChannelDeadError, TransientStoreError
from .presence import PresenceSet

logger = logging.getLogger(__name__)

PRESENCE_LOCK_STRIPES = 64


class Channel(Protocol):
    channel_id: str

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Write one frame, raising ChannelDeadError when the transport refuses it."""

    async def close(self) -> None:
        """Close the transport if it is still open."""


class WebSocketChannel:
    """Channel backed by one accepted WebSocket.

    Writes are serialized per socket so that concurrent fanouts never
    interleave frames on the same connection.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.channel_id = uuid.uuid4().hex
        self._websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send_json(self, payload: dict[str, Any]) -> None:
        async with self._send_lock:
            try:
                await self._websocket.send_json(payload)
            except Exception as exc:
                raise ChannelDeadError(f"Send failed on channel {self.channel_id}: {exc!r}") from exc

    async def close(self) -> None:
        try:
            await self._websocket.close(code=1011)
        except RuntimeError as exc:
            logger.debug("Channel %s already closed: %s", self.channel_id, exc)

    def __repr__(self) -> str:
        return f"WebSocketChannel({self.channel_id})"


@dataclass
class _PartyEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    channels: set[Any] = field(default_factory=set)
    retired: bool = False


class ConnectionRegistry:
    """Maps a party id to its live channels with one lock per party.

    An entry exists only while the party has at least one channel. The entry
    emptied by ``unregister`` is retired under its lock, so a ``register``
    that raced onto it starts over on a fresh entry. Presence writes run in
    the threadpool after the entry lock is released; each one takes the
    party's presence lock and writes the state the registry holds at that
    moment, so writes that finish out of order still settle on the truth.
    """

    def __init__(self, presence: PresenceSet | None = None) -> None:
        self._entries: dict[int, _PartyEntry] = {}
        self._presence = presence
        self._presence_locks = [asyncio.Lock() for _ in range(PRESENCE_LOCK_STRIPES)]

    async def register(self, party_id: int, channel: Channel) -> bool:
        """Add a channel and return True when it is the party's first one."""
        while True:
            entry = self._entries.get(party_id)
            if entry is None:
                entry = self._entries[party_id] = _PartyEntry()
            async with entry.lock:
                if entry.retired:
                    continue
                first = not entry.channels
                entry.channels.add(channel)
                total = len(entry.channels)
            break

        logger.info("Channel %s registered for party %d; %d open", channel.channel_id, party_id, total)
        if first:
            await self._sync_presence(party_id)
        return first

    async def unregister(self, party_id: int, channel: Channel) -> bool:
        """Remove a channel and return True when it was the party's last one."""
        entry = self._entries.get(party_id)
        if entry is None:
            return False
        async with entry.lock:
            if channel not in entry.channels:
                return False
            entry.channels.discard(channel)
            remaining = len(entry.channels)
            last = remaining == 0
            if last:
                entry.retired = True
                if self._entries.get(party_id) is entry:
                    del self._entries[party_id]

        logger.info("Channel %s unregistered for party %d; %d open", channel.channel_id, party_id, remaining)
        if last:
            await self._sync_presence(party_id)
        return last

    async def channels_for(self, party_id: int) -> frozenset[Channel]:
        entry = self._entries.get(party_id)
        if entry is None:
            return frozenset()
        async with entry.lock:
            return frozenset(entry.channels)

    def has_entry(self, party_id: int) -> bool:
        return party_id in self._entries

    def connected_parties(self) -> set[int]:
        return set(self._entries)

    async def _sync_presence(self, party_id: int) -> None:
        if self._presence is None:
            return
        async with self._presence_locks[party_id % PRESENCE_LOCK_STRIPES]:
            entry = self._entries.get(party_id)
            online = entry is not None and bool(entry.channels)
            await run_in_threadpool(self._update_presence, party_id, online)

    def _update_presence(self, party_id: int, online: bool) -> None:
        try:
            if online:
                self._presence.add(party_id)
            else:
                self._presence.remove(party_id)
        except TransientStoreError as exc:
            logger.warning("Presence update for party %d (online=%s) failed: %s", party_id, online, exc)
