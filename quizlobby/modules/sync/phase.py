from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from quizlobby.modules.lobby.models import Lobby, Player


class ClientPhase(str, Enum):
    LOBBY = "lobby"
    QUESTION = "question"
    LEADERBOARD = "leaderboard"
    PODIUM = "podium"


@dataclass
class PhaseState:
    """Per-client flags for the phase on screen.

    `enter()` is the only reset point. Every timer and retry loop captures the
    epoch it was started in and does nothing once the epoch has moved on.
    """

    phase: ClientPhase = ClientPhase.LOBBY
    question_index: int = -1
    epoch: int = 0
    answered: bool = False
    navigated: bool = False
    waiting_for_players: bool = False

    def enter(self, phase: ClientPhase, question_index: Optional[int] = None) -> int:
        self.phase = phase
        if question_index is not None:
            self.question_index = question_index
        self.answered = False
        self.navigated = False
        self.waiting_for_players = False
        self.epoch += 1
        return self.epoch

    def is_current(self, epoch: int) -> bool:
        return self.epoch == epoch

    def claim_answer(self) -> bool:
        if self.answered:
            return False
        self.answered = True
        return True

    def release_answer(self) -> None:
        self.answered = False

    def claim_navigation(self) -> bool:
        if self.navigated:
            return False
        self.navigated = True
        return True

    def release_navigation(self) -> None:
        self.navigated = False


@dataclass
class PhaseChange:
    """Tells the UI which screen to show. Emitted once per transition."""

    phase: ClientPhase
    lobby: Lobby
    question_index: int
    players: list[Player] = field(default_factory=list)
