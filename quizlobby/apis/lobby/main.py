from __future__ import annotations

import asyncio

from fastapi import (
    APIRouter,
    FastAPI,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.responses import JSONResponse

from quizlobby.apis.deps import Services, get_ws_services
from quizlobby.apis.lobby.schemas import (
    AdvanceRequest,
    CountResponse,
    CreateLobbyRequest,
    CreateLobbyResponse,
    HostActionRequest,
    JoinLobbyRequest,
    JoinLobbyResponse,
    SubmitAnswerRequest,
)
from quizlobby.core.changes import Subscription
from quizlobby.core.config import settings
from quizlobby.core.logging import get_logger
from quizlobby.modules.lobby.errors import (
    DuplicateKeyError,
    LobbyError,
    LobbyNotFoundError,
    NotHostError,
    PinAllocationError,
    PlayerNotFoundError,
    QuestionNotFoundError,
    StoreError,
)
from quizlobby.modules.lobby.models import HostInfo, Lobby, Player, Question, SubmitResult

logger = get_logger(__name__)

router = APIRouter()

V = settings.app.version


def _status_for(exc: Exception) -> int:
    if isinstance(exc, (LobbyNotFoundError, PlayerNotFoundError, QuestionNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, NotHostError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, PinAllocationError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, (LobbyError, DuplicateKeyError)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def install_error_handlers(app: FastAPI) -> None:
    async def _lobby_error(request: Request, exc: Exception) -> JSONResponse:
        code = _status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    app.add_exception_handler(LobbyError, _lobby_error)
    app.add_exception_handler(StoreError, _lobby_error)


@router.post(
    f"/{V}/lobbies",
    response_model=CreateLobbyResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["lobbies"],
)
async def create_lobby(req: CreateLobbyRequest, services: Services) -> CreateLobbyResponse:
    host = HostInfo(user_id=req.user_id, username=req.username, avatar=req.avatar)
    lobby, player = await services.host_lobby(req.config, host)
    return CreateLobbyResponse(pin=lobby.pin, lobby=lobby, player=player)


@router.post(
    f"/{V}/lobbies/join",
    response_model=JoinLobbyResponse,
    tags=["lobbies"],
)
async def join_lobby(req: JoinLobbyRequest, services: Services) -> JoinLobbyResponse:
    lobby, player = await services.roster.join(
        req.pin, req.user_id, req.username, req.avatar
    )
    return JoinLobbyResponse(lobby=lobby, player=player)


@router.get(f"/{V}/lobbies/pin/{{pin}}", response_model=Lobby, tags=["lobbies"])
async def get_lobby_by_pin(pin: str, services: Services) -> Lobby:
    return await services.lifecycle.get_by_pin(pin)


@router.get(f"/{V}/lobbies/{{lobby_id}}", response_model=Lobby, tags=["lobbies"])
async def get_lobby(lobby_id: int, services: Services) -> Lobby:
    return await services.lifecycle.get(lobby_id)


@router.get(
    f"/{V}/lobbies/{{lobby_id}}/players", response_model=list[Player], tags=["lobbies"]
)
async def list_players(lobby_id: int, services: Services) -> list[Player]:
    await services.lifecycle.get(lobby_id)
    return await services.roster.list(lobby_id)


@router.get(
    f"/{V}/lobbies/{{lobby_id}}/questions",
    response_model=list[Question],
    tags=["lobbies"],
)
async def list_questions(lobby_id: int, services: Services) -> list[Question]:
    await services.lifecycle.get(lobby_id)
    return await services.store.list_questions(lobby_id)


@router.get(
    f"/{V}/lobbies/{{lobby_id}}/leaderboard",
    response_model=list[Player],
    tags=["lobbies"],
)
async def leaderboard(lobby_id: int, services: Services) -> list[Player]:
    await services.lifecycle.get(lobby_id)
    return await services.leaderboard.rank(lobby_id)


@router.get(
    f"/{V}/lobbies/{{lobby_id}}/podium", response_model=list[Player], tags=["lobbies"]
)
async def podium(lobby_id: int, services: Services) -> list[Player]:
    await services.lifecycle.get(lobby_id)
    return await services.leaderboard.podium(lobby_id)


@router.get(
    f"/{V}/questions/{{question_id}}/answers/count",
    response_model=CountResponse,
    tags=["lobbies"],
)
async def count_answers(question_id: int, services: Services) -> CountResponse:
    return CountResponse(count=await services.store.count_answers(question_id))


@router.post(f"/{V}/lobbies/{{lobby_id}}/generate", response_model=Lobby, tags=["lobbies"])
async def retry_generation(
    lobby_id: int, req: HostActionRequest, services: Services
) -> Lobby:
    return await services.retry_generation(lobby_id, req.user_id)


@router.post(f"/{V}/lobbies/{{lobby_id}}/start", response_model=Lobby, tags=["lobbies"])
async def start_game(lobby_id: int, req: HostActionRequest, services: Services) -> Lobby:
    return await services.start_game(lobby_id, req.user_id)


@router.post(f"/{V}/lobbies/{{lobby_id}}/advance", response_model=Lobby, tags=["lobbies"])
async def advance(lobby_id: int, req: AdvanceRequest, services: Services) -> Lobby:
    return await services.advance(lobby_id, req.user_id, req.from_index)


@router.post(f"/{V}/lobbies/{{lobby_id}}/end", response_model=Lobby, tags=["lobbies"])
async def end_game(lobby_id: int, req: HostActionRequest, services: Services) -> Lobby:
    return await services.end_game(lobby_id, req.user_id)


@router.post(
    f"/{V}/lobbies/{{lobby_id}}/answers",
    response_model=SubmitResult,
    tags=["lobbies"],
)
async def submit_answer(
    lobby_id: int, req: SubmitAnswerRequest, services: Services
) -> SubmitResult:
    return await services.submit_answer(
        lobby_id,
        question_id=req.question_id,
        player_id=req.player_id,
        selected_answer=req.selected_answer,
        time_taken_ms=req.time_taken_ms,
    )


async def _forward(websocket: WebSocket, sub: Subscription) -> None:
    async for event in sub:
        await websocket.send_json(event.to_json())


@router.websocket(f"/{V}/lobbies/{{lobby_id}}/live")
async def lobby_live(websocket: WebSocket, lobby_id: int) -> None:
    services = get_ws_services(websocket)
    if await services.store.get_lobby(lobby_id) is None:
        await websocket.close(code=4404)
        return

    async def _drain_incoming() -> None:
        # Clients only listen; reading keeps disconnects visible
        while True:
            await websocket.receive_text()

    # Subscribe before accepting so nothing committed after the handshake is missed
    feed = services.feed
    subs = [
        feed.subscribe("lobbies", "id", lobby_id),
        feed.subscribe("players", "lobby_id", lobby_id),
        feed.subscribe("answers", "lobby_id", lobby_id),
    ]
    tasks: list[asyncio.Task] = []
    try:
        await websocket.accept()
        logger.info("WS connected", extra={"lobby": lobby_id})
        tasks = [asyncio.create_task(_forward(websocket, s)) for s in subs]
        tasks.append(asyncio.create_task(_drain_incoming()))
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for t in done:
            exc = t.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("WS stream ended: %r", exc, extra={"lobby": lobby_id})
    finally:
        for sub in subs:
            sub.close()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("WS disconnected", extra={"lobby": lobby_id})
