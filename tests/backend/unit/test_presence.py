from swipematch.backend.presence import InMemoryPresence, RedisPresence, create_presence


def test_create_presence_selects_backend() -> None:
    assert isinstance(create_presence(None), InMemoryPresence)
    assert isinstance(create_presence("redis://localhost:6379/0"), RedisPresence)


def test_in_memory_presence_tracks_members() -> None:
    presence = InMemoryPresence()

    presence.add(1)
    presence.add(2)
    presence.remove(1)
    presence.remove(3)

    assert presence.contains(2) is True
    assert presence.contains(1) is False
    assert presence.members() == {2}
