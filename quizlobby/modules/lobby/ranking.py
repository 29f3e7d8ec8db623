from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from quizlobby.core.db_services import LobbyStore
from quizlobby.modules.lobby.models import Player

PODIUM_SIZE = 3

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def rank_players(players: Iterable[Player]) -> list[Player]:
    """Highest score first; ties go to whoever joined earlier."""
    return sorted(
        players,
        key=lambda p: (-p.total_score, p.joined_at or _EPOCH, p.id),
    )


class Leaderboard:
    def __init__(self, store: LobbyStore) -> None:
        self.store = store

    async def rank(self, lobby_id: int) -> list[Player]:
        return rank_players(await self.store.list_players(lobby_id, by_score=True))

    async def podium(self, lobby_id: int) -> list[Player]:
        return (await self.rank(lobby_id))[:PODIUM_SIZE]
