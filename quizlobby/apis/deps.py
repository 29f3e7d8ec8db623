from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, WebSocket, status

from quizlobby.modules.lobby.services import GameServices


def get_services(request: Request) -> GameServices:
    """Service container built in the app lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready"
        )
    return services


def get_ws_services(websocket: WebSocket) -> GameServices:
    return websocket.app.state.services


Services = Annotated[GameServices, Depends(get_services)]
