from __future__ import annotations

from datetime import datetime, timedelta, timezone

from quizlobby.modules.lobby.models import Player
from quizlobby.modules.lobby.ranking import rank_players
from tests.helpers import HOST, ready_lobby

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _player(pid: int, name: str, score: int, joined_offset: int) -> Player:
    return Player(
        id=pid,
        lobby_id=1,
        user_id=name.lower(),
        username=name,
        total_score=score,
        joined_at=T0 + timedelta(seconds=joined_offset),
    )


def test_ties_go_to_earlier_join():
    a = _player(1, "A", 300, 0)
    b = _player(2, "B", 300, 1)
    c = _player(3, "C", 100, 2)
    assert [p.username for p in rank_players([c, b, a])] == ["A", "B", "C"]


def test_higher_score_wins_regardless_of_join_order():
    early = _player(1, "Early", 100, 0)
    late = _player(2, "Late", 900, 60)
    assert rank_players([early, late])[0] is late


async def test_leaderboard_and_podium(services):
    lobby, players = await ready_lobby(services, guests=3)
    host, g0, g1, g2 = players
    await services.store.increment_score(g1.id, 300)
    await services.store.increment_score(g2.id, 300)
    await services.store.increment_score(host.id, 100)

    ranked = await services.leaderboard.rank(lobby.id)
    assert [p.id for p in ranked] == [g1.id, g2.id, host.id, g0.id]

    podium = await services.leaderboard.podium(lobby.id)
    assert [p.id for p in podium] == [g1.id, g2.id, host.id]


async def test_podium_with_fewer_than_three_players(services):
    lobby, players = await ready_lobby(services, guests=1)
    podium = await services.leaderboard.podium(lobby.id)
    assert [p.id for p in podium] == [p.id for p in players]
    assert podium[0].user_id == HOST.user_id
