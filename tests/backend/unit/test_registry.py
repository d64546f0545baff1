import asyncio

from swipematch.backend.errors import TransientStoreError
from swipematch.backend.presence import InMemoryPresence
from swipematch.backend.registry import ConnectionRegistry


class _Channel:
    def __init__(self, channel_id: str) -> None:
        self.channel_id = channel_id

    async def send_json(self, payload: dict) -> None:
        return None

    async def close(self) -> None:
        return None


class _BrokenPresence(InMemoryPresence):
    def add(self, party_id: int) -> None:
        raise TransientStoreError("presence down")


def test_register_reports_first_channel_and_tracks_presence() -> None:
    presence = InMemoryPresence()
    registry = ConnectionRegistry(presence=presence)
    phone, laptop = _Channel("phone"), _Channel("laptop")

    async def scenario() -> tuple[bool, bool, frozenset]:
        first = await registry.register(1, phone)
        second = await registry.register(1, laptop)
        return first, second, await registry.channels_for(1)

    first, second, channels = asyncio.run(scenario())

    assert first is True
    assert second is False
    assert channels == frozenset({phone, laptop})
    assert presence.contains(1) is True


def test_unregister_last_channel_removes_entry_and_presence() -> None:
    presence = InMemoryPresence()
    registry = ConnectionRegistry(presence=presence)
    phone, laptop = _Channel("phone"), _Channel("laptop")

    async def scenario() -> tuple[bool, bool]:
        await registry.register(1, phone)
        await registry.register(1, laptop)
        not_last = await registry.unregister(1, phone)
        last = await registry.unregister(1, laptop)
        return not_last, last

    not_last, last = asyncio.run(scenario())

    assert not_last is False
    assert last is True
    assert registry.has_entry(1) is False
    assert registry.connected_parties() == set()
    assert presence.contains(1) is False


def test_unregister_unknown_channel_is_noop() -> None:
    registry = ConnectionRegistry()
    phone = _Channel("phone")

    async def scenario() -> tuple[bool, bool]:
        unknown_party = await registry.unregister(5, phone)
        await registry.register(5, phone)
        unknown_channel = await registry.unregister(5, _Channel("other"))
        return unknown_party, unknown_channel

    assert asyncio.run(scenario()) == (False, False)
    assert registry.has_entry(5) is True


def test_channels_for_unknown_party_is_empty() -> None:
    registry = ConnectionRegistry()

    assert asyncio.run(registry.channels_for(42)) == frozenset()
    assert registry.has_entry(42) is False


def test_churn_across_parties_leaves_no_empty_entries() -> None:
    registry = ConnectionRegistry(presence=InMemoryPresence())
    channels = {party_id: [_Channel(f"{party_id}-{index}") for index in range(5)] for party_id in range(10)}

    async def connect_and_leave(party_id: int, channel: _Channel) -> None:
        await registry.register(party_id, channel)
        await asyncio.sleep(0)
        await registry.unregister(party_id, channel)

    async def scenario() -> None:
        await asyncio.gather(
            *(connect_and_leave(party_id, channel) for party_id, items in channels.items() for channel in items)
        )

    asyncio.run(scenario())

    assert registry.connected_parties() == set()


def test_register_survives_presence_failure() -> None:
    registry = ConnectionRegistry(presence=_BrokenPresence())
    phone = _Channel("phone")

    assert asyncio.run(registry.register(1, phone)) is True
    assert registry.has_entry(1) is True


def test_presence_settles_on_registry_state_under_churn() -> None:
    presence = InMemoryPresence()
    registry = ConnectionRegistry(presence=presence)
    staying = _Channel("staying")

    async def connect_and_leave(channel: _Channel) -> None:
        await registry.register(7, channel)
        await asyncio.sleep(0)
        await registry.unregister(7, channel)

    async def scenario() -> None:
        await asyncio.gather(
            *(connect_and_leave(_Channel(f"7-{index}")) for index in range(10)),
            registry.register(7, staying),
        )
        await asyncio.gather(*(connect_and_leave(_Channel(f"8-{index}")) for index in range(10)))

    asyncio.run(scenario())

    assert registry.has_entry(7) is True
    assert presence.contains(7) is True
    assert presence.members() == {7}
