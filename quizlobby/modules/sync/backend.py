"""What a game client needs from the server, and two ways to get it.

`LocalGameBackend` calls the services in-process and exposes the change feed
for push; `HttpGameBackend` talks to the REST API and has no push channel, so
a client using it relies on polling alone.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx

from quizlobby.core.changes import Subscription
from quizlobby.modules.lobby.models import Lobby, Player, Question, SubmitResult
from quizlobby.modules.lobby.services import GameServices


class GameBackend(Protocol):
    user_id: str

    async def get_lobby(self, lobby_id: int) -> Lobby: ...

    async def list_players(self, lobby_id: int) -> list[Player]: ...

    async def count_players(self, lobby_id: int) -> int: ...

    async def get_questions(self, lobby_id: int) -> list[Question]: ...

    async def count_answers(self, question_id: int) -> int: ...

    async def submit_answer(
        self,
        lobby_id: int,
        *,
        question_id: int,
        player_id: int,
        selected_answer: str,
        time_taken_ms: int,
    ) -> SubmitResult: ...

    async def start(self, lobby_id: int) -> Lobby: ...

    async def advance(self, lobby_id: int, from_index: int) -> Lobby: ...

    async def end(self, lobby_id: int) -> Lobby: ...

    async def leaderboard(self, lobby_id: int) -> list[Player]: ...

    async def subscribe(
        self, table: str, column: str, value: Any
    ) -> Optional[Subscription]: ...


class LocalGameBackend:
    def __init__(self, services: GameServices, user_id: str) -> None:
        self.services = services
        self.user_id = user_id

    async def get_lobby(self, lobby_id: int) -> Lobby:
        return await self.services.lifecycle.get(lobby_id)

    async def list_players(self, lobby_id: int) -> list[Player]:
        return await self.services.roster.list(lobby_id)

    async def count_players(self, lobby_id: int) -> int:
        return await self.services.roster.count(lobby_id)

    async def get_questions(self, lobby_id: int) -> list[Question]:
        return await self.services.store.list_questions(lobby_id)

    async def count_answers(self, question_id: int) -> int:
        return await self.services.store.count_answers(question_id)

    async def submit_answer(
        self,
        lobby_id: int,
        *,
        question_id: int,
        player_id: int,
        selected_answer: str,
        time_taken_ms: int,
    ) -> SubmitResult:
        return await self.services.submit_answer(
            lobby_id,
            question_id=question_id,
            player_id=player_id,
            selected_answer=selected_answer,
            time_taken_ms=time_taken_ms,
        )

    async def start(self, lobby_id: int) -> Lobby:
        return await self.services.start_game(lobby_id, self.user_id)

    async def advance(self, lobby_id: int, from_index: int) -> Lobby:
        return await self.services.advance(lobby_id, self.user_id, from_index)

    async def end(self, lobby_id: int) -> Lobby:
        return await self.services.end_game(lobby_id, self.user_id)

    async def leaderboard(self, lobby_id: int) -> list[Player]:
        return await self.services.leaderboard.rank(lobby_id)

    async def subscribe(self, table: str, column: str, value: Any) -> Optional[Subscription]:
        return self.services.feed.subscribe(table, column, value)


class HttpGameBackend:
    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        version: str = "v1",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ) -> None:
        self.user_id = user_id
        self._prefix = f"/{version}"
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str) -> Any:
        resp = await self._client.get(f"{self._prefix}{path}")
        resp.raise_for_status()
        return resp.json()

    async def _post(self, path: str, body: dict) -> Any:
        resp = await self._client.post(f"{self._prefix}{path}", json=body)
        resp.raise_for_status()
        return resp.json()

    async def get_lobby(self, lobby_id: int) -> Lobby:
        return Lobby.model_validate(await self._get(f"/lobbies/{lobby_id}"))

    async def list_players(self, lobby_id: int) -> list[Player]:
        data = await self._get(f"/lobbies/{lobby_id}/players")
        return [Player.model_validate(p) for p in data]

    async def count_players(self, lobby_id: int) -> int:
        return len(await self.list_players(lobby_id))

    async def get_questions(self, lobby_id: int) -> list[Question]:
        data = await self._get(f"/lobbies/{lobby_id}/questions")
        return [Question.model_validate(q) for q in data]

    async def count_answers(self, question_id: int) -> int:
        data = await self._get(f"/questions/{question_id}/answers/count")
        return int(data["count"])

    async def submit_answer(
        self,
        lobby_id: int,
        *,
        question_id: int,
        player_id: int,
        selected_answer: str,
        time_taken_ms: int,
    ) -> SubmitResult:
        data = await self._post(
            f"/lobbies/{lobby_id}/answers",
            {
                "question_id": question_id,
                "player_id": player_id,
                "selected_answer": selected_answer,
                "time_taken_ms": time_taken_ms,
            },
        )
        return SubmitResult.model_validate(data)

    async def start(self, lobby_id: int) -> Lobby:
        data = await self._post(f"/lobbies/{lobby_id}/start", {"user_id": self.user_id})
        return Lobby.model_validate(data)

    async def advance(self, lobby_id: int, from_index: int) -> Lobby:
        data = await self._post(
            f"/lobbies/{lobby_id}/advance",
            {"user_id": self.user_id, "from_index": from_index},
        )
        return Lobby.model_validate(data)

    async def end(self, lobby_id: int) -> Lobby:
        data = await self._post(f"/lobbies/{lobby_id}/end", {"user_id": self.user_id})
        return Lobby.model_validate(data)

    async def leaderboard(self, lobby_id: int) -> list[Player]:
        data = await self._get(f"/lobbies/{lobby_id}/leaderboard")
        return [Player.model_validate(p) for p in data]

    async def subscribe(self, table: str, column: str, value: Any) -> Optional[Subscription]:
        return None
