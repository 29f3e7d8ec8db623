from __future__ import annotations

import asyncio
import random

import pytest

from quizlobby.modules.lobby.errors import DuplicateKeyError, PinAllocationError
from quizlobby.modules.lobby.lifecycle import LobbyLifecycleManager
from quizlobby.modules.lobby.models import LobbyConfig, LobbyStatus
from quizlobby.modules.lobby.pin import PIN_MAX, PIN_MIN, PinAllocator
from tests.helpers import HOST


class _TakenStore:
    def __init__(self, taken: set[str]) -> None:
        self.taken = taken
        self.checked: list[str] = []

    async def pin_in_use(self, pin: str) -> bool:
        self.checked.append(pin)
        return pin in self.taken


class _ScriptedAllocator:
    """Hands out PINs from a list without checking the store."""

    def __init__(self, pins: list[str], max_attempts: int = 10) -> None:
        self.pins = list(pins)
        self.max_attempts = max_attempts

    async def allocate(self) -> str:
        return self.pins.pop(0)


def test_candidate_is_five_digits():
    allocator = PinAllocator(_TakenStore(set()), rng=random.Random(7))
    for _ in range(500):
        pin = allocator.candidate()
        assert len(pin) == 5
        assert PIN_MIN <= int(pin) <= PIN_MAX


async def test_allocate_skips_pins_in_use():
    rng = random.Random(1)
    first = str(random.Random(1).randint(PIN_MIN, PIN_MAX))
    store = _TakenStore({first})
    pin = await PinAllocator(store, rng=rng).allocate()
    assert pin != first
    assert store.checked[0] == first


async def test_allocate_gives_up_after_max_attempts():
    class _AllTaken:
        async def pin_in_use(self, pin: str) -> bool:
            return True

    allocator = PinAllocator(_AllTaken(), max_attempts=4)
    with pytest.raises(PinAllocationError) as exc:
        await allocator.allocate()
    assert exc.value.attempts == 4


async def test_live_pin_is_unique_in_the_database(store):
    values = dict(
        host_id="h",
        host_username="H",
        topics=["x"],
        time_limit=10,
        num_questions=1,
        difficulty="mild",
        current_question_index=0,
    )
    await store.insert_lobby(pin="12345", status=LobbyStatus.READY.value, **values)
    with pytest.raises(DuplicateKeyError):
        await store.insert_lobby(pin="12345", status=LobbyStatus.WAITING.value, **values)


async def test_finished_lobby_releases_its_pin(store):
    values = dict(
        host_id="h",
        host_username="H",
        topics=["x"],
        time_limit=10,
        num_questions=1,
        difficulty="mild",
        current_question_index=0,
    )
    old = await store.insert_lobby(pin="54321", status=LobbyStatus.FINISHED.value, **values)
    assert not await store.pin_in_use("54321")
    new = await store.insert_lobby(pin="54321", status=LobbyStatus.GENERATING.value, **values)
    assert new.id != old.id
    assert (await store.get_lobby_by_pin("54321")).id == new.id


async def test_create_retries_when_insert_loses_pin_race(store):
    taken = await LobbyLifecycleManager(
        store, _ScriptedAllocator(["11111"])
    ).create(LobbyConfig(topics=["a"]), HOST)

    lifecycle = LobbyLifecycleManager(store, _ScriptedAllocator(["11111", "22222"]))
    lobby = await lifecycle.create(LobbyConfig(topics=["a"]), HOST)
    assert taken.pin == "11111"
    assert lobby.pin == "22222"


async def test_create_raises_when_every_insert_collides(store):
    await LobbyLifecycleManager(store, _ScriptedAllocator(["11111"])).create(
        LobbyConfig(topics=["a"]), HOST
    )
    lifecycle = LobbyLifecycleManager(
        store, _ScriptedAllocator(["11111"] * 3, max_attempts=3)
    )
    with pytest.raises(PinAllocationError):
        await lifecycle.create(LobbyConfig(topics=["a"]), HOST)


async def test_concurrent_creates_get_distinct_pins(services):
    config = LobbyConfig(topics=["music"], num_questions=1)
    lobbies = await asyncio.gather(
        *(services.lifecycle.create(config, HOST) for _ in range(10))
    )
    pins = [lobby.pin for lobby in lobbies]
    assert len(set(pins)) == len(pins)
