from __future__ import annotations

from typing import Optional

from quizlobby.modules.lobby.models import (
    Difficulty,
    HostInfo,
    Lobby,
    LobbyConfig,
    Player,
    QuestionDraft,
)
from quizlobby.modules.lobby.services import GameServices

HOST = HostInfo(user_id="host-1", username="Hosty", avatar="fox")


def make_drafts(n: int) -> list[QuestionDraft]:
    return [
        QuestionDraft(
            question_text=f"Question {i}?",
            correct_answer=f"right-{i}",
            wrong_answers=[f"wrong-{i}-a", f"wrong-{i}-b", f"wrong-{i}-c"],
        )
        for i in range(n)
    ]


async def fake_generate(
    topics: list[str], difficulty: Difficulty, n: int
) -> list[QuestionDraft]:
    return make_drafts(n)


async def ready_lobby(
    services: GameServices,
    *,
    guests: int = 1,
    num_questions: int = 3,
    time_limit: int = 10,
    host: Optional[HostInfo] = None,
) -> tuple[Lobby, list[Player]]:
    """A lobby with its questions stored, the host seated and `guests` joined."""
    config = LobbyConfig(
        topics=["science"], num_questions=num_questions, time_limit=time_limit
    )
    lobby, host_player = await services.host_lobby(config, host or HOST)
    await services.queue.join()
    players = [host_player]
    for i in range(guests):
        _, p = await services.roster.join(lobby.pin, f"guest-{i}", f"Guest {i}")
        players.append(p)
    return await services.lifecycle.get(lobby.id), players
