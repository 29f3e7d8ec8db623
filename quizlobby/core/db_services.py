"""Database service for lobby, player, question and answer rows.

`LobbyStore` is the only code that talks SQL. Each call runs in its own
session; successful writes are published to the change feed after commit.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quizlobby.core.changes import ChangeEvent, ChangeFeed
from quizlobby.core.db.schemas.lobby import (
    AnswerRecord,
    LobbyRecord,
    PlayerRecord,
    QuestionRecord,
)
from quizlobby.core.logging import get_logger
from quizlobby.modules.lobby.errors import DuplicateKeyError, StoreError
from quizlobby.modules.lobby.models import (
    Answer,
    Lobby,
    LobbyStatus,
    Player,
    Question,
    QuestionDraft,
)

logger = get_logger(__name__)


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == "23505":
        return True
    return "unique" in str(orig).lower()


@asynccontextmanager
async def _translate_errors() -> AsyncIterator[None]:
    try:
        yield
    except IntegrityError as e:
        if _is_unique_violation(e):
            raise DuplicateKeyError(str(e.orig)) from e
        raise StoreError(str(e)) from e
    except SQLAlchemyError as e:
        raise StoreError(str(e)) from e


class LobbyStore:
    """Service for reading and writing game rows."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self._sessions = session_maker
        self.feed = feed or ChangeFeed()

    def _publish(self, table: str, op: str, row: Any) -> None:
        self.feed.publish(ChangeEvent(table=table, op=op, row=row.model_dump(mode="json")))

    # Lobbies ------------------------------------------------------------
    async def insert_lobby(self, **values: Any) -> Lobby:
        async with _translate_errors(), self._sessions() as session:
            record = LobbyRecord(**values)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            lobby = Lobby.model_validate(record)
        self._publish("lobbies", "INSERT", lobby)
        return lobby

    async def pin_in_use(self, pin: str) -> bool:
        """True if a lobby that has not finished holds this PIN."""
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(
                select(LobbyRecord.id).where(
                    LobbyRecord.pin == pin,
                    LobbyRecord.status != LobbyStatus.FINISHED.value,
                )
            )
            return result.first() is not None

    async def get_lobby(self, lobby_id: int) -> Optional[Lobby]:
        async with _translate_errors(), self._sessions() as session:
            record = await session.get(LobbyRecord, lobby_id)
            return Lobby.model_validate(record) if record else None

    async def get_lobby_by_pin(self, pin: str) -> Optional[Lobby]:
        """Live lobby for a PIN, falling back to the newest finished one."""
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(
                select(LobbyRecord)
                .where(LobbyRecord.pin == pin)
                .order_by(
                    (LobbyRecord.status == LobbyStatus.FINISHED.value).asc(),
                    LobbyRecord.created_at.desc(),
                )
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return Lobby.model_validate(record) if record else None

    async def update_lobby(
        self,
        lobby_id: int,
        values: dict[str, Any],
        *,
        where: Optional[dict[str, Any]] = None,
    ) -> Optional[Lobby]:
        """Update one lobby row if every `where` column still holds its value.

        Returns the updated row, or None when the precondition did not hold.
        """
        stmt = update(LobbyRecord).where(LobbyRecord.id == lobby_id)
        for column, expected in (where or {}).items():
            stmt = stmt.where(getattr(LobbyRecord, column) == expected)
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(stmt.values(**values))
            if result.rowcount == 0:
                await session.rollback()
                return None
            await session.commit()
            record = await session.get(LobbyRecord, lobby_id, populate_existing=True)
            lobby = Lobby.model_validate(record)
        self._publish("lobbies", "UPDATE", lobby)
        return lobby

    # Players ------------------------------------------------------------
    async def insert_player(self, **values: Any) -> Player:
        async with _translate_errors(), self._sessions() as session:
            record = PlayerRecord(**values)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            player = Player.model_validate(record)
        self._publish("players", "INSERT", player)
        return player

    async def get_player(self, player_id: int) -> Optional[Player]:
        async with _translate_errors(), self._sessions() as session:
            record = await session.get(PlayerRecord, player_id)
            return Player.model_validate(record) if record else None

    async def find_player(self, lobby_id: int, user_id: str) -> Optional[Player]:
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(
                select(PlayerRecord).where(
                    PlayerRecord.lobby_id == lobby_id, PlayerRecord.user_id == user_id
                )
            )
            record = result.scalar_one_or_none()
            return Player.model_validate(record) if record else None

    async def list_players(self, lobby_id: int, *, by_score: bool = False) -> list[Player]:
        """Players in join order, or by score (ties by join order)."""
        stmt = select(PlayerRecord).where(PlayerRecord.lobby_id == lobby_id)
        if by_score:
            stmt = stmt.order_by(PlayerRecord.total_score.desc())
        stmt = stmt.order_by(PlayerRecord.joined_at.asc(), PlayerRecord.id.asc())
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(stmt)
            return [Player.model_validate(r) for r in result.scalars().all()]

    async def count_players(self, lobby_id: int) -> int:
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(
                select(func.count(PlayerRecord.id)).where(PlayerRecord.lobby_id == lobby_id)
            )
            return int(result.scalar_one())

    async def increment_score(self, player_id: int, points: int) -> Optional[Player]:
        async with _translate_errors(), self._sessions() as session:
            await self._increment(session, player_id, points)
            await session.commit()
            record = await session.get(PlayerRecord, player_id, populate_existing=True)
            player = Player.model_validate(record) if record else None
        if player:
            self._publish("players", "UPDATE", player)
        return player

    @staticmethod
    async def _increment(session: AsyncSession, player_id: int, points: int) -> None:
        await session.execute(
            update(PlayerRecord)
            .where(PlayerRecord.id == player_id)
            .values(total_score=PlayerRecord.total_score + points)
        )

    # Questions ----------------------------------------------------------
    async def insert_questions(
        self, lobby_id: int, drafts: Iterable[QuestionDraft]
    ) -> list[Question]:
        async with _translate_errors(), self._sessions() as session:
            records = [
                QuestionRecord(
                    lobby_id=lobby_id,
                    question_index=idx,
                    question_text=d.question_text,
                    correct_answer=d.correct_answer,
                    wrong_answers=list(d.wrong_answers),
                )
                for idx, d in enumerate(drafts)
            ]
            session.add_all(records)
            await session.commit()
            for r in records:
                await session.refresh(r)
            return [Question.model_validate(r) for r in records]

    async def list_questions(self, lobby_id: int) -> list[Question]:
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(
                select(QuestionRecord)
                .where(QuestionRecord.lobby_id == lobby_id)
                .order_by(QuestionRecord.question_index.asc())
            )
            return [Question.model_validate(r) for r in result.scalars().all()]

    async def get_question(self, question_id: int) -> Optional[Question]:
        async with _translate_errors(), self._sessions() as session:
            record = await session.get(QuestionRecord, question_id)
            return Question.model_validate(record) if record else None

    # Answers ------------------------------------------------------------
    async def record_answer(self, **values: Any) -> tuple[Answer, Optional[Player]]:
        """Insert an answer and add its points to the player in one transaction.

        Raises DuplicateKeyError if the player already answered the question;
        in that case nothing is written.
        """
        points = int(values.get("points_earned") or 0)
        async with _translate_errors(), self._sessions() as session:
            record = AnswerRecord(**values)
            session.add(record)
            await session.flush()
            if points > 0:
                await self._increment(session, record.player_id, points)
            await session.commit()
            await session.refresh(record)
            answer = Answer.model_validate(record)
            player_record = await session.get(
                PlayerRecord, answer.player_id, populate_existing=True
            )
            player = Player.model_validate(player_record) if player_record else None
        self._publish("answers", "INSERT", answer)
        if player and points > 0:
            self._publish("players", "UPDATE", player)
        return answer, player

    async def get_answer(self, question_id: int, player_id: int) -> Optional[Answer]:
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(
                select(AnswerRecord).where(
                    AnswerRecord.question_id == question_id,
                    AnswerRecord.player_id == player_id,
                )
            )
            record = result.scalar_one_or_none()
            return Answer.model_validate(record) if record else None

    async def count_answers(self, question_id: int) -> int:
        async with _translate_errors(), self._sessions() as session:
            result = await session.execute(
                select(func.count(AnswerRecord.id)).where(
                    AnswerRecord.question_id == question_id
                )
            )
            return int(result.scalar_one())
