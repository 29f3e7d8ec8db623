from __future__ import annotations

from pydantic import BaseModel, Field

from quizlobby.modules.lobby.models import Lobby, LobbyConfig, Player


class CreateLobbyRequest(BaseModel):
    user_id: str = Field(..., description="Account id of the host")
    username: str
    avatar: str = ""
    config: LobbyConfig


class CreateLobbyResponse(BaseModel):
    pin: str
    lobby: Lobby
    player: Player


class JoinLobbyRequest(BaseModel):
    pin: str = Field(..., min_length=5, max_length=5)
    user_id: str
    username: str
    avatar: str = ""


class JoinLobbyResponse(BaseModel):
    lobby: Lobby
    player: Player


class HostActionRequest(BaseModel):
    user_id: str = Field(..., description="Caller's account id; must be the host")


class AdvanceRequest(HostActionRequest):
    from_index: int = Field(..., ge=0)


class SubmitAnswerRequest(BaseModel):
    question_id: int
    player_id: int
    # Empty string means the countdown ran out
    selected_answer: str = ""
    time_taken_ms: int = Field(..., ge=0)


class CountResponse(BaseModel):
    count: int
