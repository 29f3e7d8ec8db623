"""Pydantic models for lobbies, players, questions and answers.

These are the shapes every component hands around: the store converts ORM rows
into them, the API returns them, and the client synchronizer keeps its local
view of the game in them.
"""

from __future__ import annotations

import random
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class LobbyStatus(str, Enum):
    WAITING = "waiting"
    GENERATING = "generating"
    READY = "ready"
    PLAYING = "playing"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @property
    def accepts_players(self) -> bool:
        return self not in (LobbyStatus.PLAYING, LobbyStatus.FINISHED)


_STATUS_ORDER = [
    LobbyStatus.WAITING,
    LobbyStatus.GENERATING,
    LobbyStatus.READY,
    LobbyStatus.PLAYING,
    LobbyStatus.FINISHED,
]


class Difficulty(str, Enum):
    MILD = "mild"
    SPICY = "spicy"
    EXTRA_SPICY = "extra_spicy"


class LobbyConfig(BaseModel):
    """Game configuration chosen by the host; immutable after creation."""

    topics: list[str] = Field(min_length=1)
    time_limit: int = Field(default=15, ge=1, le=300, description="Seconds per question")
    num_questions: int = Field(default=10, ge=1, le=50)
    difficulty: Difficulty = Difficulty.MILD

    @field_validator("topics")
    @classmethod
    def _clean_topics(cls, value: list[str]) -> list[str]:
        cleaned = [t.strip() for t in value if t and t.strip()]
        if not cleaned:
            raise ValueError("At least one topic is required.")
        return cleaned


class HostInfo(BaseModel):
    user_id: str
    username: str
    avatar: str = ""


class Lobby(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    pin: str
    host_id: str
    host_username: str
    host_avatar: str = ""
    topics: list[str] = Field(default_factory=list)
    time_limit: int
    num_questions: int
    difficulty: Difficulty
    status: LobbyStatus
    current_question_index: int = 0
    question_started_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    normalize_timestamps = field_validator(
        "question_started_at", "created_at", "started_at", "ended_at"
    )(_as_utc)

    @property
    def is_last_question(self) -> bool:
        return self.current_question_index >= self.num_questions - 1


class Player(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lobby_id: int
    user_id: str
    username: str
    avatar: str = ""
    total_score: int = 0
    joined_at: Optional[datetime] = None

    normalize_timestamps = field_validator("joined_at")(_as_utc)


class QuestionDraft(BaseModel):
    """A generated question before it is attached to a lobby."""

    question_text: str
    correct_answer: str
    wrong_answers: list[str] = Field(default_factory=list)


class Question(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lobby_id: int
    question_index: int
    question_text: str
    correct_answer: str
    wrong_answers: list[str] = Field(default_factory=list)

    def shuffled_choices(self, rng: Optional[random.Random] = None) -> list[str]:
        """All four answers in display order."""
        choices = [self.correct_answer, *self.wrong_answers]
        (rng or random).shuffle(choices)
        return choices


class Answer(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lobby_id: int
    question_id: int
    player_id: int
    selected_answer: str = ""
    is_correct: bool = False
    time_taken: int
    points_earned: int = 0
    answered_at: Optional[datetime] = None

    normalize_timestamps = field_validator("answered_at")(_as_utc)


class SubmitResult(BaseModel):
    points: int
    is_correct: bool
    # True when an answer for this (question, player) already existed
    duplicate: bool = False
