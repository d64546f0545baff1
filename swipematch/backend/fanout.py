"""Best-effort delivery of events to every live channel of a set of parties."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from .errors import ChannelDeadError, TransientStoreError
from .events import encode_event
from .registry import Channel, ConnectionRegistry
from .store import SwipeStore

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT_SECONDS = 10.0


@dataclass
class DeliveryReport:
    delivered: int = 0
    failed: int = 0
    offline_recipients: int = 0


class FanoutDispatcher:
    """Pushes one event to all channels of the recipients.

    Each send carries a deadline; a failed or late send schedules the
    channel's unregistration in the background and never blocks the other
    sends. Parties without channels are skipped and the event is not kept.
    ``deliver`` returns only after every send of the event finished, so
    events passed in sequence reach a channel in that sequence. When a
    cleanup removes a party's last channel, ``on_party_offline`` is awaited
    with that party id.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: SwipeStore,
        send_timeout_seconds: float = DEFAULT_SEND_TIMEOUT_SECONDS,
        on_party_offline: Callable[[int], Awaitable[None]] | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._send_timeout = send_timeout_seconds
        self.on_party_offline = on_party_offline
        self._cleanup_tasks: set[asyncio.Task[None]] = set()

    async def deliver(self, recipients: Iterable[int], event: BaseModel) -> DeliveryReport:
        payload = encode_event(event)
        report = DeliveryReport()
        targets: list[tuple[int, Channel]] = []
        for party_id in dict.fromkeys(recipients):
            channels = await self._registry.channels_for(party_id)
            if not channels:
                report.offline_recipients += 1
                continue
            targets.extend((party_id, channel) for channel in channels)

        if targets:
            results = await asyncio.gather(
                *(self._send(party_id, channel, payload) for party_id, channel in targets)
            )
            report.delivered = sum(1 for ok in results if ok)
            report.failed = len(results) - report.delivered

        logger.debug(
            "Delivered %s event to %d channel(s); %d failed; %d offline",
            payload.get("type"),
            report.delivered,
            report.failed,
            report.offline_recipients,
        )
        return report

    async def deliver_to_match(
        self,
        match_id: int,
        event: BaseModel,
        exclude_party_id: int | None = None,
    ) -> DeliveryReport:
        try:
            participants = await run_in_threadpool(self._store.find_match_participants, match_id)
        except TransientStoreError as exc:
            logger.warning("Could not resolve participants of match %d: %s", match_id, exc)
            return DeliveryReport()
        if participants is None:
            logger.warning("Match %d not found; dropping %s event", match_id, type(event).__name__)
            return DeliveryReport()
        recipients = [party_id for party_id in participants if party_id != exclude_party_id]
        return await self.deliver(recipients, event)

    async def drain(self) -> None:
        """Wait for pending dead-channel cleanups."""
        while self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks))

    async def _send(self, party_id: int, channel: Channel, payload: dict) -> bool:
        try:
            await asyncio.wait_for(channel.send_json(payload), timeout=self._send_timeout)
            return True
        except ChannelDeadError as exc:
            logger.warning("Dropping dead channel %s of party %d: %s", channel.channel_id, party_id, exc)
        except asyncio.TimeoutError:
            logger.warning(
                "Send to channel %s of party %d exceeded %.1fs; dropping it",
                channel.channel_id,
                party_id,
                self._send_timeout,
            )
        self._schedule_cleanup(party_id, channel)
        return False

    def _schedule_cleanup(self, party_id: int, channel: Channel) -> None:
        task = asyncio.get_running_loop().create_task(self._cleanup(party_id, channel))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _cleanup(self, party_id: int, channel: Channel) -> None:
        last = await self._registry.unregister(party_id, channel)
        await channel.close()
        if last and self.on_party_offline is not None:
            await self.on_party_offline(party_id)
