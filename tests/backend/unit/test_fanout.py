import asyncio

from swipematch.backend.errors import ChannelDeadError, TransientStoreError
from swipematch.backend.events import TypingEvent
from swipematch.backend.fanout import FanoutDispatcher
from swipematch.backend.registry import ConnectionRegistry
from swipematch.backend.store import InMemorySwipeStore


class _Channel:
    def __init__(self, channel_id: str, fail: bool = False, delay: float = 0.0) -> None:
        self.channel_id = channel_id
        self.fail = fail
        self.delay = delay
        self.sent: list[dict] = []
        self.closed = False

    async def send_json(self, payload: dict) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ChannelDeadError(f"{self.channel_id} is gone")
        self.sent.append(payload)

    async def close(self) -> None:
        self.closed = True


def _typing(match_id: int = 1, party_id: int = 1, is_typing: bool = True) -> TypingEvent:
    return TypingEvent(match_id=match_id, party_id=party_id, is_typing=is_typing)


def _dispatcher(timeout: float = 1.0) -> tuple[FanoutDispatcher, ConnectionRegistry, InMemorySwipeStore]:
    store = InMemorySwipeStore()
    registry = ConnectionRegistry()
    return FanoutDispatcher(registry=registry, store=store, send_timeout_seconds=timeout), registry, store


def test_deliver_to_party_without_channels_drops_event() -> None:
    dispatcher, _, _ = _dispatcher()

    report = asyncio.run(dispatcher.deliver([7], _typing()))

    assert report.delivered == 0
    assert report.failed == 0
    assert report.offline_recipients == 1


def test_deliver_sends_one_copy_to_each_channel_of_a_party() -> None:
    dispatcher, registry, _ = _dispatcher()
    phone, laptop = _Channel("phone"), _Channel("laptop")

    async def scenario():
        await registry.register(1, phone)
        await registry.register(1, laptop)
        return await dispatcher.deliver([1, 1], _typing())

    report = asyncio.run(scenario())

    assert report.delivered == 2
    assert phone.sent == [{"type": "typing", "match_id": 1, "party_id": 1, "is_typing": True}]
    assert laptop.sent == phone.sent


def test_dead_channel_is_unregistered_without_blocking_others() -> None:
    dispatcher, registry, _ = _dispatcher()
    dead, alive, other_party = _Channel("dead", fail=True), _Channel("alive"), _Channel("other")

    async def scenario():
        await registry.register(1, dead)
        await registry.register(1, alive)
        await registry.register(2, other_party)
        report = await dispatcher.deliver([1, 2], _typing())
        await dispatcher.drain()
        return report, await registry.channels_for(1)

    report, remaining = asyncio.run(scenario())

    assert report.delivered == 2
    assert report.failed == 1
    assert len(alive.sent) == 1
    assert len(other_party.sent) == 1
    assert remaining == frozenset({alive})
    assert dead.closed is True


def test_send_timeout_is_treated_as_disconnect() -> None:
    dispatcher, registry, _ = _dispatcher(timeout=0.05)
    slow, fast = _Channel("slow", delay=1.0), _Channel("fast")

    async def scenario():
        await registry.register(1, slow)
        await registry.register(2, fast)
        report = await dispatcher.deliver([1, 2], _typing())
        await dispatcher.drain()
        return report

    report = asyncio.run(scenario())

    assert report.failed == 1
    assert slow.sent == []
    assert len(fast.sent) == 1
    assert registry.has_entry(1) is False


def test_sequential_deliveries_keep_their_order() -> None:
    dispatcher, registry, _ = _dispatcher()
    channel = _Channel("phone")

    async def scenario():
        await registry.register(1, channel)
        for index in range(5):
            await dispatcher.deliver([1], _typing(match_id=index))

    asyncio.run(scenario())

    assert [payload["match_id"] for payload in channel.sent] == [0, 1, 2, 3, 4]


def test_deliver_to_match_skips_excluded_sender() -> None:
    dispatcher, registry, store = _dispatcher()
    alice = store.create_party("alice").party_id
    bob = store.create_party("bob").party_id
    match, _ = store.insert_match_if_absent(alice, bob)
    alice_channel, bob_channel = _Channel("alice"), _Channel("bob")

    async def scenario():
        await registry.register(alice, alice_channel)
        await registry.register(bob, bob_channel)
        return await dispatcher.deliver_to_match(match.match_id, _typing(match.match_id, alice), exclude_party_id=alice)

    report = asyncio.run(scenario())

    assert report.delivered == 1
    assert alice_channel.sent == []
    assert len(bob_channel.sent) == 1


def test_deliver_to_unknown_match_delivers_nothing() -> None:
    dispatcher, _, _ = _dispatcher()

    report = asyncio.run(dispatcher.deliver_to_match(99, _typing(99)))

    assert report.delivered == 0


def test_deliver_to_match_survives_unavailable_store() -> None:
    class _UnavailableStore(InMemorySwipeStore):
        def find_match_participants(self, match_id):
            raise TransientStoreError("database restarting")

    registry = ConnectionRegistry()
    dispatcher = FanoutDispatcher(registry=registry, store=_UnavailableStore())

    report = asyncio.run(dispatcher.deliver_to_match(1, _typing()))

    assert report.delivered == 0
    assert report.failed == 0


def test_cleanup_reports_party_offline_only_when_last_channel_goes() -> None:
    dispatcher, registry, _ = _dispatcher()
    offline: list[int] = []

    async def record_offline(party_id: int) -> None:
        offline.append(party_id)

    dispatcher.on_party_offline = record_offline
    dead_phone, laptop, dead_only = _Channel("phone", fail=True), _Channel("laptop"), _Channel("only", fail=True)

    async def scenario() -> None:
        await registry.register(1, dead_phone)
        await registry.register(1, laptop)
        await registry.register(2, dead_only)
        await dispatcher.deliver([1, 2], _typing())
        await dispatcher.drain()

    asyncio.run(scenario())

    assert offline == [2]
    assert registry.has_entry(1) is True
    assert registry.has_entry(2) is False
