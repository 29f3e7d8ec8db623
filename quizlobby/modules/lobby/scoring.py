"""Answer submission and points.

A correct answer is worth a flat 1000 plus up to 500 for speed, scaled by the
share of the time limit left when it was submitted. Wrong and timed-out
answers (empty string) are worth nothing.
"""

from __future__ import annotations

import math

from quizlobby.core.db_services import LobbyStore
from quizlobby.core.logging import get_logger
from quizlobby.modules.lobby.errors import DuplicateKeyError
from quizlobby.modules.lobby.models import SubmitResult

logger = get_logger(__name__)

BASE_POINTS = 1000
MAX_SPEED_BONUS = 500
NO_ANSWER = ""


def compute_points(
    selected_answer: str, correct_answer: str, time_taken_ms: int, time_limit_sec: int
) -> int:
    if selected_answer == NO_ANSWER or selected_answer != correct_answer:
        return 0
    limit_ms = time_limit_sec * 1000
    time_ratio = max(0.0, 1 - (time_taken_ms / limit_ms)) if limit_ms > 0 else 0.0
    # Halves round up, not to even
    speed_bonus = math.floor(time_ratio * MAX_SPEED_BONUS + 0.5)
    return BASE_POINTS + speed_bonus


class ScoringEngine:
    def __init__(self, store: LobbyStore) -> None:
        self.store = store

    async def submit(
        self,
        *,
        lobby_id: int,
        question_id: int,
        player_id: int,
        selected_answer: str,
        correct_answer: str,
        time_taken_ms: int,
        time_limit_sec: int,
    ) -> SubmitResult:
        """Record one answer per (question, player) and credit its points.

        A second submission for the same pair is absorbed: nothing is written
        and the first answer's result comes back with `duplicate=True`.
        """
        time_taken_ms = max(0, int(time_taken_ms))
        is_correct = selected_answer != NO_ANSWER and selected_answer == correct_answer
        points = compute_points(
            selected_answer, correct_answer, time_taken_ms, time_limit_sec
        )
        try:
            await self.store.record_answer(
                lobby_id=lobby_id,
                question_id=question_id,
                player_id=player_id,
                selected_answer=selected_answer,
                is_correct=is_correct,
                time_taken=time_taken_ms,
                points_earned=points,
            )
        except DuplicateKeyError:
            existing = await self.store.get_answer(question_id, player_id)
            logger.info(
                "Duplicate answer for question %s absorbed",
                question_id,
                extra={"lobby": lobby_id, "player": player_id},
            )
            if existing is None:
                return SubmitResult(points=0, is_correct=False, duplicate=True)
            return SubmitResult(
                points=existing.points_earned,
                is_correct=existing.is_correct,
                duplicate=True,
            )
        return SubmitResult(points=points, is_correct=is_correct)
