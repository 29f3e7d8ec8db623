"""Per-client game synchronizer.

Each player (host included) runs one `GameSynchronizer`. It keeps a local
copy of the lobby row fresh through two channels, a best-effort push
subscription and a fixed-interval poll, and turns what it sees into exactly
one `PhaseChange` per screen transition:

    lobby -> question(i) -> leaderboard(i) -> question(i+1) -> ... -> podium

Leaving a question is decided locally: either everyone has answered (checked
after our own answer and whenever an answer is pushed) or the countdown
anchored at `question_started_at` runs out. Leaving the leaderboard is the
host's call; everyone else waits for the lobby row to change.

Everything runs on one event loop, so the flag checks in `PhaseState` are
atomic between awaits.
"""

from __future__ import annotations

import asyncio
import inspect
import math
import random
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Optional

from quizlobby.core.changes import ChangeEvent, Subscription
from quizlobby.core.config import GameSettings
from quizlobby.core.logging import lobby_logger
from quizlobby.modules.lobby.errors import (
    InvalidTransitionError,
    NotEnoughPlayersError,
    NotHostError,
)
from quizlobby.modules.lobby.models import (
    Lobby,
    LobbyStatus,
    Player,
    Question,
    SubmitResult,
)
from quizlobby.modules.lobby.scoring import NO_ANSWER
from quizlobby.modules.sync.backend import GameBackend
from quizlobby.modules.sync.phase import ClientPhase, PhaseChange, PhaseState
from quizlobby.modules.sync.reconcile import ReconciliationLoop, Sleep


PhaseCallback = Callable[[PhaseChange], Any]
RosterCallback = Callable[[list[Player]], Any]

# Leaderboard standings are re-read every Nth poll tick
LEADERBOARD_REFRESH_TICKS = 4


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _is_older(new: Lobby, old: Lobby) -> bool:
    """True if `new` is a stale copy of a row we have already seen move on."""
    if old.status in (LobbyStatus.PLAYING, LobbyStatus.FINISHED):
        if new.status.rank < old.status.rank:
            return True
        if new.status == old.status == LobbyStatus.PLAYING:
            return new.current_question_index < old.current_question_index
    return False


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class GameSynchronizer:
    def __init__(
        self,
        backend: GameBackend,
        *,
        lobby_id: int,
        is_host: bool = False,
        on_phase: Optional[PhaseCallback] = None,
        on_roster: Optional[RosterCallback] = None,
        settings: Optional[GameSettings] = None,
        clock: Callable[[], datetime] = _now_utc,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.backend = backend
        self.lobby_id = lobby_id
        self.is_host = is_host
        self.settings = settings or GameSettings()
        self.state = PhaseState()
        self.log = lobby_logger(__name__, lobby_id, role="host" if is_host else "guest")

        self.lobby: Optional[Lobby] = None
        self.player: Optional[Player] = None
        self.players: list[Player] = []
        self.standings: list[Player] = []
        self.questions: list[Question] = []
        self.question: Optional[Question] = None
        self.choices: list[str] = []
        self.last_result: Optional[SubmitResult] = None
        # Epoch of the question whose own answer is stored
        self._settled_epoch = -1

        self._on_phase = on_phase
        self._on_roster = on_roster
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._poll = ReconciliationLoop(
            self.settings.poll_interval_sec,
            self._poll_tick,
            name=f"lobby-{lobby_id}-poll",
            sleep=sleep,
        )
        self._subs: list[Subscription] = []
        self._phase_subs: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()
        self._phase_tasks: set[asyncio.Task] = set()
        self._closed = False

    # Lifecycle ----------------------------------------------------------
    async def start(self) -> None:
        lobby = await self.backend.get_lobby(self.lobby_id)
        await self._refresh_roster()

        lobby_sub = await self.backend.subscribe("lobbies", "id", self.lobby_id)
        if lobby_sub is not None:
            self._subs.append(lobby_sub)
            self._spawn(self._pump(lobby_sub, self._on_lobby_event))
        players_sub = await self.backend.subscribe("players", "lobby_id", self.lobby_id)
        if players_sub is not None:
            self._subs.append(players_sub)
            self._spawn(self._pump(players_sub, self._on_players_event))

        self._poll.start()
        await self._apply(lobby)

    async def stop(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._poll.stop()
        for sub in self._subs + self._phase_subs:
            sub.close()
        self._subs.clear()
        self._phase_subs.clear()
        current = asyncio.current_task()
        pending = [t for t in self._tasks | self._phase_tasks if t is not current]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    @property
    def phase(self) -> ClientPhase:
        return self.state.phase

    @property
    def closed(self) -> bool:
        return self._closed

    # Task plumbing ------------------------------------------------------
    def _spawn(
        self, coro: Coroutine[Any, Any, Any], *, phase_scoped: bool = False
    ) -> asyncio.Task:
        task = asyncio.create_task(coro)
        bucket = self._phase_tasks if phase_scoped else self._tasks
        bucket.add(task)
        task.add_done_callback(bucket.discard)
        task.add_done_callback(self._log_task_error)
        return task

    def _log_task_error(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.warning("Background task failed: %r", exc)

    def _enter(self, phase: ClientPhase, question_index: Optional[int] = None) -> int:
        """Reset per-phase state and tear down the previous phase's timers."""
        current = asyncio.current_task()
        for t in list(self._phase_tasks):
            if t is not current:
                t.cancel()
        for sub in self._phase_subs:
            sub.close()
        self._phase_subs.clear()
        epoch = self.state.enter(phase, question_index)
        self._poll.interval = (
            self.settings.leaderboard_poll_interval_sec
            if phase == ClientPhase.LEADERBOARD
            else self.settings.poll_interval_sec
        )
        return epoch

    async def _emit(self, phase: ClientPhase, players: Optional[list[Player]] = None) -> None:
        if self._on_phase is None or self.lobby is None:
            return
        change = PhaseChange(
            phase=phase,
            lobby=self.lobby,
            question_index=self.state.question_index,
            players=list(players or []),
        )
        try:
            await _maybe_await(self._on_phase(change))
        except Exception:  # noqa: BLE001
            self.log.exception("Phase callback failed")

    # Inbound state ------------------------------------------------------
    async def _pump(
        self, sub: Subscription, handler: Callable[[ChangeEvent], Awaitable[None]]
    ) -> None:
        try:
            async for event in sub:
                if self._closed:
                    return
                try:
                    await handler(event)
                except Exception:  # noqa: BLE001
                    self.log.warning("Push handler failed", exc_info=True)
        finally:
            sub.close()

    async def _on_lobby_event(self, event: ChangeEvent) -> None:
        await self._apply(Lobby.model_validate(event.row))

    async def _on_players_event(self, event: ChangeEvent) -> None:
        if self.state.phase == ClientPhase.LOBBY:
            await self._refresh_roster()

    async def _poll_tick(self) -> None:
        lobby = await self.backend.get_lobby(self.lobby_id)
        await self._apply(lobby)
        if self.state.phase == ClientPhase.LOBBY:
            await self._refresh_roster()
        elif (
            self.state.phase == ClientPhase.LEADERBOARD
            and self._poll.ticks % LEADERBOARD_REFRESH_TICKS == 0
        ):
            self.standings = await self.backend.leaderboard(self.lobby_id)

    async def _refresh_roster(self) -> None:
        self.players = await self.backend.list_players(self.lobby_id)
        if self.player is None:
            self.player = next(
                (p for p in self.players if p.user_id == self.backend.user_id), None
            )
            if self.player is not None:
                self.log.extra["player"] = self.player.id
        if self._on_roster is not None:
            await _maybe_await(self._on_roster(list(self.players)))

    async def _apply(self, lobby: Lobby) -> None:
        """Fold a lobby row (from either channel) into local state."""
        if self._closed:
            return
        if self.lobby is not None and _is_older(lobby, self.lobby):
            return
        self.lobby = lobby
        st = self.state

        if lobby.status == LobbyStatus.FINISHED:
            if st.phase != ClientPhase.PODIUM:
                await self._enter_podium()
            return
        if lobby.status != LobbyStatus.PLAYING or st.phase == ClientPhase.PODIUM:
            return
        if st.phase == ClientPhase.LOBBY or lobby.current_question_index > st.question_index:
            await self._enter_question(lobby)

    # Question phase -----------------------------------------------------
    async def _enter_question(self, lobby: Lobby) -> None:
        index = lobby.current_question_index
        # Load before touching phase state: if this raises, the next poll tick
        # still sees an unentered question and tries again
        if index >= len(self.questions):
            self.questions = await self.backend.get_questions(self.lobby_id)
        if self.player is None:
            await self._refresh_roster()
        if index >= len(self.questions):
            self.log.warning("No question at index %d yet", index)
            return

        # The other channel may have entered (or moved past) it meanwhile
        st = self.state
        current = self.lobby
        if (
            self._closed
            or current is None
            or current.status != LobbyStatus.PLAYING
            or current.current_question_index != index
            or not (st.phase == ClientPhase.LOBBY or index > st.question_index)
        ):
            return

        epoch = self._enter(ClientPhase.QUESTION, index)
        self.last_result = None
        self.question = self.questions[index]
        self.choices = self.question.shuffled_choices(self._rng)

        try:
            sub = await self.backend.subscribe("answers", "question_id", self.question.id)
        except Exception:  # noqa: BLE001
            # Push is best-effort; own answer and the countdown still move us on
            self.log.warning("Answer subscription failed", exc_info=True)
            sub = None
        if sub is not None:
            if self.state.is_current(epoch):
                self._phase_subs.append(sub)
                self._spawn(self._pump(sub, self._on_answer_event), phase_scoped=True)
            else:
                sub.close()
        if not self.state.is_current(epoch):
            return
        self._spawn(self._countdown(epoch), phase_scoped=True)
        await self._emit(ClientPhase.QUESTION)

    def _seconds_left(self) -> float:
        lobby = self.lobby
        if lobby is None or lobby.question_started_at is None:
            return 0.0
        elapsed = (self._clock() - lobby.question_started_at).total_seconds()
        return max(0.0, lobby.time_limit - elapsed)

    def remaining_seconds(self) -> int:
        """Whole seconds left on the active question's countdown."""
        if self.state.phase != ClientPhase.QUESTION:
            return 0
        return math.ceil(self._seconds_left())

    def _elapsed_ms(self) -> int:
        lobby = self.lobby
        if lobby is None or lobby.question_started_at is None:
            return 0
        delta = self._clock() - lobby.question_started_at
        return max(0, int(delta.total_seconds() * 1000))

    async def _countdown(self, epoch: int) -> None:
        left = self._seconds_left()
        if left > 0:
            await self._sleep(left)
        if self.state.is_current(epoch):
            await self._time_up(epoch)

    async def _on_answer_event(self, event: ChangeEvent) -> None:
        st = self.state
        if st.phase != ClientPhase.QUESTION or st.navigated or self.question is None:
            return
        if event.row.get("question_id") != self.question.id:
            return
        epoch = st.epoch
        await self._check_all_answered(epoch, self.settings.answer_signal_retries)

    async def answer(self, choice: str) -> Optional[SubmitResult]:
        """Submit the local player's answer. Returns None if it was ignored."""
        st = self.state
        if st.phase != ClientPhase.QUESTION or self.question is None or self.player is None:
            return None
        if not st.claim_answer():
            return None
        epoch = st.epoch
        question = self.question
        try:
            result = await self.backend.submit_answer(
                self.lobby_id,
                question_id=question.id,
                player_id=self.player.id,
                selected_answer=choice,
                time_taken_ms=self._elapsed_ms(),
            )
        except Exception:
            # Let the player try again
            if st.is_current(epoch):
                st.release_answer()
            raise
        if not st.is_current(epoch):
            return result
        self.last_result = result
        self._settled_epoch = epoch
        if result.points > 0 and not result.duplicate:
            self.player = self.player.model_copy(
                update={"total_score": self.player.total_score + result.points}
            )
        self._spawn(self._after_own_answer(epoch), phase_scoped=True)
        return result

    async def _after_own_answer(self, epoch: int) -> None:
        await self._sleep(self.settings.answer_feedback_delay_sec)
        await self._check_all_answered(epoch, self.settings.own_answer_retries)

    async def _check_all_answered(self, epoch: int, retries: int) -> None:
        st = self.state
        while True:
            if not st.is_current(epoch) or st.navigated or self.question is None:
                return
            try:
                total_players = await self.backend.count_players(self.lobby_id)
                total_answers = await self.backend.count_answers(self.question.id)
            except Exception:  # noqa: BLE001
                self.log.warning("Answer count failed; moving on", exc_info=True)
                await self._move_to_leaderboard(epoch)
                return
            if total_answers >= total_players:
                await self._move_to_leaderboard(epoch)
                return
            if retries <= 0:
                if self._settled_epoch != epoch:
                    # Our own answer or the countdown decides when we leave
                    st.waiting_for_players = False
                    return
                self.log.info(
                    "Timeout waiting for all players (%d/%d), moving on",
                    total_answers,
                    total_players,
                )
                await self._move_to_leaderboard(epoch)
                return
            st.waiting_for_players = True
            retries -= 1
            await self._sleep(self.settings.answer_retry_interval_sec)

    async def _time_up(self, epoch: int) -> None:
        st = self.state
        if st.claim_answer() and self.player is not None and self.question is not None:
            try:
                self.last_result = await self.backend.submit_answer(
                    self.lobby_id,
                    question_id=self.question.id,
                    player_id=self.player.id,
                    selected_answer=NO_ANSWER,
                    time_taken_ms=self.lobby.time_limit * 1000 if self.lobby else 0,
                )
            except Exception:  # noqa: BLE001
                self.log.warning("Timeout answer failed", exc_info=True)
            self._settled_epoch = epoch
        await self._sleep(self.settings.timeout_advance_delay_sec)
        await self._move_to_leaderboard(epoch)

    # Leaderboard phase --------------------------------------------------
    async def _move_to_leaderboard(self, epoch: int) -> None:
        st = self.state
        if not st.is_current(epoch) or not st.claim_navigation():
            return
        new_epoch = self._enter(ClientPhase.LEADERBOARD)
        try:
            self.standings = await self.backend.leaderboard(self.lobby_id)
        except Exception:  # noqa: BLE001
            self.log.warning("Leaderboard fetch failed", exc_info=True)
        if st.is_current(new_epoch):
            await self._emit(ClientPhase.LEADERBOARD, self.standings)

    @property
    def is_last_question(self) -> bool:
        return self.lobby is not None and self.state.question_index >= self.lobby.num_questions - 1

    async def continue_game(self) -> Optional[Lobby]:
        """Host only: next question, or the podium after the last one."""
        if not self.is_host:
            raise NotHostError()
        st = self.state
        if st.phase != ClientPhase.LEADERBOARD or not st.claim_navigation():
            return None
        try:
            if self.is_last_question:
                lobby = await self.backend.end(self.lobby_id)
            else:
                lobby = await self.backend.advance(self.lobby_id, st.question_index)
        except Exception:
            st.release_navigation()
            raise
        await self._apply(lobby)
        return lobby

    # Lobby phase --------------------------------------------------------
    async def start_game(self) -> Optional[Lobby]:
        """Host only: start once the lobby is ready and has enough players."""
        if not self.is_host:
            raise NotHostError()
        st = self.state
        if st.phase != ClientPhase.LOBBY or not st.claim_navigation():
            return None
        try:
            have = await self.backend.count_players(self.lobby_id)
            if have < self.settings.min_players:
                raise NotEnoughPlayersError(have, self.settings.min_players)
            lobby = await self.backend.get_lobby(self.lobby_id)
            if lobby.status != LobbyStatus.READY:
                raise InvalidTransitionError(lobby.status.value, LobbyStatus.PLAYING.value)
            lobby = await self.backend.start(self.lobby_id)
        except Exception:
            st.release_navigation()
            raise
        await self._apply(lobby)
        return lobby

    # Podium -------------------------------------------------------------
    async def _enter_podium(self) -> None:
        epoch = self._enter(ClientPhase.PODIUM)
        await self._poll.stop()
        try:
            self.standings = await self.backend.leaderboard(self.lobby_id)
        except Exception:  # noqa: BLE001
            self.log.warning("Final standings fetch failed", exc_info=True)
        if self.state.is_current(epoch):
            await self._emit(ClientPhase.PODIUM, self.standings)
