from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quizlobby.apis.lobby.main import install_error_handlers, router as lobby_router
from quizlobby.core.changes import ChangeFeed
from quizlobby.core.config import Settings, settings as default_settings
from quizlobby.core.db.base import build_engine, build_session_maker, create_tables
from quizlobby.modules.lobby.services import GameServices, GenerateQuestions


def create_app(
    settings: Optional[Settings] = None,
    *,
    generate: Optional[GenerateQuestions] = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(settings)
        await create_tables(engine)
        services = GameServices.build(
            build_session_maker(engine),
            settings,
            feed=ChangeFeed(),
            generate=generate,
        )
        services.start()
        app.state.services = services
        try:
            yield
        finally:
            await services.stop()
            await engine.dispose()

    app = FastAPI(
        title=settings.app.name, version=settings.app.version, lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(app)
    app.include_router(lobby_router)

    @app.get("/")
    async def root():
        return {
            "status": "ok",
            "app": settings.app.name,
            "version": settings.app.version,
        }

    return app


app = create_app()


if __name__ == "__main__":
    try:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=default_settings.app.port,
            reload=not default_settings.app.is_production,
        )
    except Exception as e:
        print(f"An error occurred when starting the server: {e}.")
