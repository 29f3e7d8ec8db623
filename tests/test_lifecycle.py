from __future__ import annotations

import asyncio

import pytest

from quizlobby.modules.lobby.errors import (
    InvalidTransitionError,
    LobbyNotFoundError,
    NotEnoughPlayersError,
    NotHostError,
)
from quizlobby.modules.lobby.lifecycle import can_transition
from quizlobby.modules.lobby.models import LobbyConfig, LobbyStatus
from quizlobby.modules.lobby.services import QuestionSetProvider
from tests.helpers import HOST, make_drafts, ready_lobby

S = LobbyStatus


def test_transition_table():
    assert can_transition(S.WAITING, S.GENERATING)
    assert can_transition(S.GENERATING, S.WAITING)
    assert can_transition(S.READY, S.PLAYING)
    assert can_transition(S.PLAYING, S.FINISHED)
    assert not can_transition(S.WAITING, S.PLAYING)
    assert not can_transition(S.GENERATING, S.PLAYING)
    assert not can_transition(S.FINISHED, S.WAITING)
    assert not can_transition(S.PLAYING, S.READY)


async def test_new_lobby_generates_then_becomes_ready(services):
    lobby, host = await services.host_lobby(
        LobbyConfig(topics=["history"], num_questions=4), HOST
    )
    assert lobby.status == S.GENERATING
    assert host.user_id == HOST.user_id
    assert len(lobby.pin) == 5

    await services.queue.join()
    lobby = await services.lifecycle.get(lobby.id)
    assert lobby.status == S.READY
    questions = await services.store.list_questions(lobby.id)
    assert [q.question_index for q in questions] == [0, 1, 2, 3]
    assert all(len(q.wrong_answers) == 3 for q in questions)


async def test_failed_generation_returns_to_waiting_and_can_retry(services):
    calls = []

    async def flaky(topics, difficulty, n):
        calls.append(n)
        if len(calls) == 1:
            raise RuntimeError("model unavailable")
        return make_drafts(n)

    services.provider._generate = flaky
    lobby, _ = await services.host_lobby(LobbyConfig(topics=["x"], num_questions=2), HOST)
    await services.queue.join()
    assert (await services.lifecycle.get(lobby.id)).status == S.WAITING

    with pytest.raises(NotHostError):
        await services.retry_generation(lobby.id, "someone-else")

    retried = await services.retry_generation(lobby.id, HOST.user_id)
    assert retried.status == S.GENERATING
    await services.queue.join()
    assert (await services.lifecycle.get(lobby.id)).status == S.READY
    assert calls == [2, 2]


async def test_short_question_set_counts_as_failure(services):
    async def short(topics, difficulty, n):
        return make_drafts(n - 1)

    provider = QuestionSetProvider(
        services.store, services.lifecycle, services.queue, generate=short
    )
    lobby = await services.lifecycle.create(LobbyConfig(topics=["x"], num_questions=3), HOST)
    assert await provider.run_generation(lobby.id, ["x"], lobby.difficulty, 3) is False
    assert (await services.lifecycle.get(lobby.id)).status == S.WAITING
    assert await services.store.list_questions(lobby.id) == []


async def test_start_needs_enough_players(services):
    lobby, _ = await ready_lobby(services, guests=0)
    with pytest.raises(NotEnoughPlayersError) as exc:
        await services.start_game(lobby.id, HOST.user_id)
    assert exc.value.have == 1
    assert (await services.lifecycle.get(lobby.id)).status == S.READY


async def test_start_requires_ready(services):
    lobby = await services.lifecycle.create(LobbyConfig(topics=["x"]), HOST)
    with pytest.raises(InvalidTransitionError):
        await services.lifecycle.start(lobby.id)


async def test_only_host_can_start(services):
    lobby, _ = await ready_lobby(services)
    with pytest.raises(NotHostError):
        await services.start_game(lobby.id, "guest-0")


async def test_start_sets_first_question(services):
    lobby, _ = await ready_lobby(services)
    started = await services.start_game(lobby.id, HOST.user_id)
    assert started.status == S.PLAYING
    assert started.current_question_index == 0
    assert started.question_started_at is not None
    assert started.started_at is not None


async def test_advance_moves_one_question(services):
    lobby, _ = await ready_lobby(services, num_questions=3)
    started = await services.start_game(lobby.id, HOST.user_id)
    advanced = await services.advance(lobby.id, HOST.user_id, 0)
    assert advanced.current_question_index == 1
    assert advanced.status == S.PLAYING
    assert advanced.question_started_at >= started.question_started_at


async def test_racing_advances_apply_once(services):
    lobby, _ = await ready_lobby(services, num_questions=3)
    await services.start_game(lobby.id, HOST.user_id)

    results = await asyncio.gather(
        services.lifecycle.advance(lobby.id, 0),
        services.lifecycle.advance(lobby.id, 0),
        services.lifecycle.advance(lobby.id, 0),
    )
    assert [r.current_question_index for r in results] == [1, 1, 1]
    assert (await services.lifecycle.get(lobby.id)).current_question_index == 1


async def test_stale_advance_is_a_no_op(services):
    lobby, _ = await ready_lobby(services, num_questions=3)
    await services.start_game(lobby.id, HOST.user_id)
    await services.lifecycle.advance(lobby.id, 0)
    again = await services.lifecycle.advance(lobby.id, 0)
    assert again.current_question_index == 1


async def test_advance_from_last_question_finishes(services):
    lobby, _ = await ready_lobby(services, num_questions=2)
    await services.start_game(lobby.id, HOST.user_id)
    await services.lifecycle.advance(lobby.id, 0)
    done = await services.lifecycle.advance(lobby.id, 1)
    assert done.status == S.FINISHED
    assert done.current_question_index == 1
    assert done.ended_at is not None
    # Advancing a finished lobby changes nothing
    assert (await services.lifecycle.advance(lobby.id, 1)).status == S.FINISHED


async def test_end_is_idempotent(services):
    lobby, _ = await ready_lobby(services)
    await services.start_game(lobby.id, HOST.user_id)
    first = await services.end_game(lobby.id, HOST.user_id)
    second = await services.end_game(lobby.id, HOST.user_id)
    assert first.status == second.status == S.FINISHED
    assert first.ended_at == second.ended_at


async def test_end_from_lobby_screen(services):
    lobby, _ = await ready_lobby(services)
    ended = await services.end_game(lobby.id, HOST.user_id)
    assert ended.status == S.FINISHED
    with pytest.raises(InvalidTransitionError):
        await services.lifecycle.start(lobby.id)


async def test_status_never_goes_backwards(services):
    lobby, _ = await ready_lobby(services, num_questions=2)
    sub = services.feed.subscribe("lobbies", "id", lobby.id)
    await services.start_game(lobby.id, HOST.user_id)
    await services.lifecycle.advance(lobby.id, 0)
    await services.lifecycle.advance(lobby.id, 1)
    await services.end_game(lobby.id, HOST.user_id)
    sub.close()

    seen = [S(event.row["status"]) async for event in sub]
    assert seen[0] == S.PLAYING
    assert seen[-1] == S.FINISHED
    ranks = [s.rank for s in seen]
    assert ranks == sorted(ranks)


async def test_unknown_lobby(services):
    with pytest.raises(LobbyNotFoundError):
        await services.lifecycle.get(424242)
    with pytest.raises(LobbyNotFoundError):
        await services.lifecycle.get_by_pin("00000")
