"""Wiring for the lobby components plus the host-only entry points.

`GameServices.build()` constructs every component around one store so API
handlers, background jobs and in-process clients share the same instances.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quizlobby.core.changes import ChangeFeed
from quizlobby.core.config import Settings
from quizlobby.core.db_services import LobbyStore
from quizlobby.core.logging import get_logger
from quizlobby.core.task_queue import BackgroundQueue
from quizlobby.modules.lobby.errors import (
    InvalidTransitionError,
    NotHostError,
    PlayerNotFoundError,
    QuestionNotFoundError,
)
from quizlobby.modules.lobby.generator import generate_ai_questions
from quizlobby.modules.lobby.lifecycle import LobbyLifecycleManager
from quizlobby.modules.lobby.models import (
    Difficulty,
    HostInfo,
    Lobby,
    LobbyConfig,
    Player,
    QuestionDraft,
    SubmitResult,
)
from quizlobby.modules.lobby.pin import PinAllocator
from quizlobby.modules.lobby.ranking import Leaderboard
from quizlobby.modules.lobby.roster import PlayerRoster
from quizlobby.modules.lobby.scoring import ScoringEngine

logger = get_logger(__name__)

GenerateQuestions = Callable[[list[str], Difficulty, int], Awaitable[list[QuestionDraft]]]


class GenerationError(Exception):
    pass


class QuestionSetProvider:
    """Runs question generation in the background and flips the lobby status."""

    def __init__(
        self,
        store: LobbyStore,
        lifecycle: LobbyLifecycleManager,
        queue: BackgroundQueue,
        *,
        generate: GenerateQuestions,
    ) -> None:
        self.store = store
        self.lifecycle = lifecycle
        self.queue = queue
        self._generate = generate

    def request_generation(
        self, lobby_id: int, topics: list[str], difficulty: Difficulty, count: int
    ) -> None:
        """Fire-and-forget; the outcome shows up as a lobby status change."""

        async def _job() -> None:
            await self.run_generation(lobby_id, topics, difficulty, count)

        self.queue.enqueue(lobby_id, _job)

    async def run_generation(
        self, lobby_id: int, topics: list[str], difficulty: Difficulty, count: int
    ) -> bool:
        try:
            existing = await self.store.list_questions(lobby_id)
            if len(existing) < count:
                drafts = await self._generate(list(topics), difficulty, count)
                if len(drafts) < count:
                    raise GenerationError(
                        f"expected {count} questions, got {len(drafts)}"
                    )
                await self.store.insert_questions(lobby_id, drafts[:count])
            await self.lifecycle.mark_ready(lobby_id)
            return True
        except Exception as e:  # noqa: BLE001
            logger.error("Question generation failed: %s", e, extra={"lobby": lobby_id})
            try:
                await self.lifecycle.mark_generation_failed(lobby_id)
            except InvalidTransitionError:
                # Lobby moved on (e.g. ended) while we were generating
                pass
            return False


@dataclass
class GameServices:
    settings: Settings
    store: LobbyStore
    queue: BackgroundQueue
    lifecycle: LobbyLifecycleManager
    roster: PlayerRoster
    scoring: ScoringEngine
    leaderboard: Leaderboard
    provider: QuestionSetProvider

    @classmethod
    def build(
        cls,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Settings,
        *,
        feed: Optional[ChangeFeed] = None,
        generate: Optional[GenerateQuestions] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "GameServices":
        store = LobbyStore(session_maker, feed)
        queue = BackgroundQueue(concurrency=settings.game.generation_concurrency)
        clock_kw = {"clock": clock} if clock else {}
        lifecycle = LobbyLifecycleManager(
            store,
            PinAllocator(store, max_attempts=settings.game.pin_max_attempts),
            min_players=settings.game.min_players,
            **clock_kw,
        )

        async def _default_generate(
            topics: list[str], difficulty: Difficulty, n: int
        ) -> list[QuestionDraft]:
            return await generate_ai_questions(topics, difficulty, n, settings=settings)

        return cls(
            settings=settings,
            store=store,
            queue=queue,
            lifecycle=lifecycle,
            roster=PlayerRoster(store, **clock_kw),
            scoring=ScoringEngine(store),
            leaderboard=Leaderboard(store),
            provider=QuestionSetProvider(
                store, lifecycle, queue, generate=generate or _default_generate
            ),
        )

    @property
    def feed(self) -> ChangeFeed:
        return self.store.feed

    def start(self) -> None:
        self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()

    @staticmethod
    def _require_host(lobby: Lobby, user_id: str) -> None:
        if lobby.host_id != user_id:
            raise NotHostError()

    async def host_lobby(self, config: LobbyConfig, host: HostInfo) -> tuple[Lobby, Player]:
        """Create a lobby, seat the host as its first player, start generating."""
        lobby = await self.lifecycle.create(config, host)
        player = await self.roster.admit(lobby, host.user_id, host.username, host.avatar)
        self.provider.request_generation(
            lobby.id, lobby.topics, lobby.difficulty, lobby.num_questions
        )
        return lobby, player

    async def retry_generation(self, lobby_id: int, user_id: str) -> Lobby:
        lobby = await self.lifecycle.get(lobby_id)
        self._require_host(lobby, user_id)
        lobby = await self.lifecycle.begin_generation(lobby_id)
        self.provider.request_generation(
            lobby.id, lobby.topics, lobby.difficulty, lobby.num_questions
        )
        return lobby

    async def start_game(self, lobby_id: int, user_id: str) -> Lobby:
        self._require_host(await self.lifecycle.get(lobby_id), user_id)
        return await self.lifecycle.start(lobby_id)

    async def advance(self, lobby_id: int, user_id: str, from_index: int) -> Lobby:
        self._require_host(await self.lifecycle.get(lobby_id), user_id)
        return await self.lifecycle.advance(lobby_id, from_index)

    async def end_game(self, lobby_id: int, user_id: str) -> Lobby:
        self._require_host(await self.lifecycle.get(lobby_id), user_id)
        return await self.lifecycle.end(lobby_id)

    async def submit_answer(
        self,
        lobby_id: int,
        *,
        question_id: int,
        player_id: int,
        selected_answer: str,
        time_taken_ms: int,
    ) -> SubmitResult:
        """Score against the stored question and the lobby's time limit."""
        lobby = await self.lifecycle.get(lobby_id)
        question = await self.store.get_question(question_id)
        if question is None or question.lobby_id != lobby_id:
            raise QuestionNotFoundError(f"Question {question_id} not in lobby {lobby_id}")
        player = await self.store.get_player(player_id)
        if player is None or player.lobby_id != lobby_id:
            raise PlayerNotFoundError(f"Player {player_id} not in lobby {lobby_id}")
        return await self.scoring.submit(
            lobby_id=lobby_id,
            question_id=question_id,
            player_id=player_id,
            selected_answer=selected_answer,
            correct_answer=question.correct_answer,
            time_taken_ms=time_taken_ms,
            time_limit_sec=lobby.time_limit,
        )
