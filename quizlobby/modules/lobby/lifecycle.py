"""Lobby status machine and question advancement.

The only writer of `lobbies.status`, `current_question_index` and
`question_started_at`. Every write is conditional on the state the decision
was made from, so two clients racing to advance the same question move the
lobby exactly once.

    waiting    -> generating            (generation requested)
    generating -> ready                 (question set stored)
    generating -> waiting               (generation failed; host may retry)
    ready      -> playing               (host start, >= MIN_PLAYERS)
    playing    -> playing               (advance, index + 1)
    playing    -> finished              (advance past the last question, or end)
    *          -> finished              (end)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from quizlobby.core.db_services import LobbyStore
from quizlobby.core.logging import get_logger
from quizlobby.modules.lobby.errors import (
    DuplicateKeyError,
    InvalidTransitionError,
    LobbyNotFoundError,
    NotEnoughPlayersError,
    PinAllocationError,
)
from quizlobby.modules.lobby.models import HostInfo, Lobby, LobbyConfig, LobbyStatus
from quizlobby.modules.lobby.pin import PinAllocator

logger = get_logger(__name__)

S = LobbyStatus

TRANSITIONS: dict[LobbyStatus, frozenset[LobbyStatus]] = {
    S.WAITING: frozenset({S.GENERATING, S.FINISHED}),
    S.GENERATING: frozenset({S.READY, S.WAITING, S.FINISHED}),
    S.READY: frozenset({S.PLAYING, S.FINISHED}),
    S.PLAYING: frozenset({S.PLAYING, S.FINISHED}),
    S.FINISHED: frozenset(),
}


def can_transition(current: LobbyStatus, target: LobbyStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: LobbyStatus, target: LobbyStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class LobbyLifecycleManager:
    def __init__(
        self,
        store: LobbyStore,
        allocator: PinAllocator,
        *,
        min_players: int = 2,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self.store = store
        self.allocator = allocator
        self.min_players = min_players
        self._clock = clock

    async def get(self, lobby_id: int) -> Lobby:
        lobby = await self.store.get_lobby(lobby_id)
        if lobby is None:
            raise LobbyNotFoundError(lobby_id)
        return lobby

    async def get_by_pin(self, pin: str) -> Lobby:
        lobby = await self.store.get_lobby_by_pin(pin)
        if lobby is None:
            raise LobbyNotFoundError(pin)
        return lobby

    async def create(self, config: LobbyConfig, host: HostInfo) -> Lobby:
        """Insert a lobby in `generating` under a freshly allocated PIN.

        The PIN check is a read, so a concurrent creator can pick the same
        PIN; the partial unique index rejects the loser, which retries.
        """
        for _ in range(self.allocator.max_attempts):
            pin = await self.allocator.allocate()
            try:
                lobby = await self.store.insert_lobby(
                    pin=pin,
                    host_id=host.user_id,
                    host_username=host.username,
                    host_avatar=host.avatar,
                    topics=list(config.topics),
                    time_limit=config.time_limit,
                    num_questions=config.num_questions,
                    difficulty=config.difficulty.value,
                    status=S.GENERATING.value,
                    current_question_index=0,
                    created_at=self._clock(),
                )
            except DuplicateKeyError:
                logger.warning("PIN %s lost an insert race; retrying", pin)
                continue
            logger.info("Lobby created with PIN %s", pin, extra={"lobby": lobby.id})
            return lobby
        raise PinAllocationError(self.allocator.max_attempts)

    async def _move(
        self,
        lobby: Lobby,
        target: LobbyStatus,
        values: Optional[dict] = None,
    ) -> Lobby:
        check_transition(lobby.status, target)
        updated = await self.store.update_lobby(
            lobby.id,
            {"status": target.value, **(values or {})},
            where={"status": lobby.status.value},
        )
        if updated is None:
            current = await self.get(lobby.id)
            raise InvalidTransitionError(current.status.value, target.value)
        logger.info(
            "Lobby %s -> %s", lobby.status.value, target.value, extra={"lobby": lobby.id}
        )
        return updated

    async def begin_generation(self, lobby_id: int) -> Lobby:
        return await self._move(await self.get(lobby_id), S.GENERATING)

    async def mark_ready(self, lobby_id: int) -> Lobby:
        return await self._move(await self.get(lobby_id), S.READY)

    async def mark_generation_failed(self, lobby_id: int) -> Lobby:
        return await self._move(await self.get(lobby_id), S.WAITING)

    async def start(self, lobby_id: int) -> Lobby:
        lobby = await self.get(lobby_id)
        check_transition(lobby.status, S.PLAYING)
        if lobby.status != S.READY:
            raise InvalidTransitionError(lobby.status.value, S.PLAYING.value)
        have = await self.store.count_players(lobby_id)
        if have < self.min_players:
            raise NotEnoughPlayersError(have, self.min_players)
        now = self._clock()
        return await self._move(
            lobby,
            S.PLAYING,
            {
                "started_at": now,
                "current_question_index": 0,
                "question_started_at": now,
            },
        )

    async def advance(self, lobby_id: int, from_index: int) -> Lobby:
        """Move one question past `from_index`, or finish after the last one.

        A caller that observed an index the lobby has already moved past gets
        the current row back unchanged.
        """
        lobby = await self.get(lobby_id)
        if lobby.status == S.FINISHED:
            return lobby
        if lobby.status != S.PLAYING:
            raise InvalidTransitionError(lobby.status.value, S.PLAYING.value)
        if lobby.current_question_index > from_index:
            logger.info(
                "Stale advance from %d ignored (now at %d)",
                from_index,
                lobby.current_question_index,
                extra={"lobby": lobby_id},
            )
            return lobby
        if lobby.current_question_index < from_index:
            raise InvalidTransitionError(
                f"{lobby.status.value}@{lobby.current_question_index}",
                f"{S.PLAYING.value}@{from_index + 1}",
            )

        now = self._clock()
        if from_index + 1 >= lobby.num_questions:
            values = {"status": S.FINISHED.value, "ended_at": now}
        else:
            values = {
                "current_question_index": from_index + 1,
                "question_started_at": now,
            }
        updated = await self.store.update_lobby(
            lobby_id,
            values,
            where={"status": S.PLAYING.value, "current_question_index": from_index},
        )
        if updated is None:
            # Someone else advanced or ended between our read and write
            return await self.get(lobby_id)
        logger.info(
            "Advanced from question %d (status=%s)",
            from_index,
            updated.status.value,
            extra={"lobby": lobby_id},
        )
        return updated

    async def end(self, lobby_id: int) -> Lobby:
        lobby = await self.get(lobby_id)
        if lobby.status == S.FINISHED:
            return lobby
        try:
            return await self._move(lobby, S.FINISHED, {"ended_at": self._clock()})
        except InvalidTransitionError:
            current = await self.get(lobby_id)
            if current.status == S.FINISHED:
                return current
            raise
