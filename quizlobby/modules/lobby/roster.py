from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from quizlobby.core.db_services import LobbyStore
from quizlobby.core.logging import get_logger
from quizlobby.modules.lobby.errors import (
    DuplicateKeyError,
    LobbyClosedError,
    LobbyNotFoundError,
)
from quizlobby.modules.lobby.models import Lobby, Player

logger = get_logger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class PlayerRoster:
    """Lobby membership. Joining twice with the same account is a no-op."""

    def __init__(
        self, store: LobbyStore, *, clock: Callable[[], datetime] = _now_utc
    ) -> None:
        self.store = store
        self._clock = clock

    async def join(
        self, pin: str, user_id: str, username: str, avatar: str = ""
    ) -> tuple[Lobby, Player]:
        lobby = await self.store.get_lobby_by_pin(pin.strip())
        if lobby is None:
            raise LobbyNotFoundError(pin)
        if not lobby.status.accepts_players:
            raise LobbyClosedError(lobby.status.value)
        return lobby, await self.admit(lobby, user_id, username, avatar)

    async def admit(
        self, lobby: Lobby, user_id: str, username: str, avatar: str = ""
    ) -> Player:
        existing = await self.store.find_player(lobby.id, user_id)
        if existing:
            return existing
        try:
            player = await self.store.insert_player(
                lobby_id=lobby.id,
                user_id=user_id,
                username=username,
                avatar=avatar,
                total_score=0,
                joined_at=self._clock(),
            )
        except DuplicateKeyError:
            # A concurrent join for the same account won the insert
            existing = await self.store.find_player(lobby.id, user_id)
            if existing is None:
                raise
            return existing
        logger.info(
            "%s joined", username, extra={"lobby": lobby.id, "player": player.id}
        )
        return player

    async def list(self, lobby_id: int) -> list[Player]:
        return await self.store.list_players(lobby_id)

    async def count(self, lobby_id: int) -> int:
        return await self.store.count_players(lobby_id)

    async def for_account(self, lobby_id: int, user_id: str) -> Player | None:
        return await self.store.find_player(lobby_id, user_id)
