from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    JSON,
    Boolean,
    UniqueConstraint,
    text as sa_text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quizlobby.core.db.base import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class LobbyRecord(Base):
    __tablename__ = "lobbies"
    __table_args__ = (
        # PIN is unique among lobbies that have not finished yet
        Index(
            "uq_lobbies_live_pin",
            "pin",
            unique=True,
            postgresql_where=sa_text("status <> 'finished'"),
            sqlite_where=sa_text("status <> 'finished'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    pin: Mapped[str] = mapped_column(String(5), nullable=False, index=True)

    host_id: Mapped[str] = mapped_column(String, nullable=False)
    host_username: Mapped[str] = mapped_column(String, nullable=False)
    host_avatar: Mapped[str] = mapped_column(String, nullable=False, default="")

    topics: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    time_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    num_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    difficulty: Mapped[str] = mapped_column(String, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, index=True)
    current_question_index: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    question_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, index=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    players: Mapped[list["PlayerRecord"]] = relationship(
        "PlayerRecord", back_populates="lobby", cascade="all, delete-orphan"
    )
    questions: Mapped[list["QuestionRecord"]] = relationship(
        "QuestionRecord", back_populates="lobby", cascade="all, delete-orphan"
    )


class PlayerRecord(Base):
    __tablename__ = "players"
    __table_args__ = (
        UniqueConstraint("lobby_id", "user_id", name="uq_players_lobby_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lobby_id: Mapped[int] = mapped_column(ForeignKey("lobbies.id"), index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String, nullable=False)
    avatar: Mapped[str] = mapped_column(String, nullable=False, default="")
    total_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, index=True
    )

    lobby: Mapped["LobbyRecord"] = relationship(
        "LobbyRecord", back_populates="players"
    )


class QuestionRecord(Base):
    __tablename__ = "questions"
    __table_args__ = (
        UniqueConstraint(
            "lobby_id", "question_index", name="uq_questions_lobby_index"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lobby_id: Mapped[int] = mapped_column(ForeignKey("lobbies.id"), index=True)
    question_index: Mapped[int] = mapped_column(Integer, nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    wrong_answers: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc
    )

    lobby: Mapped["LobbyRecord"] = relationship(
        "LobbyRecord", back_populates="questions"
    )


class AnswerRecord(Base):
    __tablename__ = "answers"
    __table_args__ = (
        UniqueConstraint("question_id", "player_id", name="uq_answers_question_player"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lobby_id: Mapped[int] = mapped_column(ForeignKey("lobbies.id"), index=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("questions.id"), index=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), index=True)
    # Empty string means the player ran out of time
    selected_answer: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    time_taken: Mapped[int] = mapped_column(Integer, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    answered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, index=True
    )


__all__ = [
    "LobbyRecord",
    "PlayerRecord",
    "QuestionRecord",
    "AnswerRecord",
]
