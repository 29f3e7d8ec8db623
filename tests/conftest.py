from __future__ import annotations

import pytest

from quizlobby.core.changes import ChangeFeed
from quizlobby.core.config import GameSettings, PostgresSettings, Settings
from quizlobby.core.db.base import build_engine, build_session_maker, create_tables
from quizlobby.core.db_services import LobbyStore
from quizlobby.modules.lobby.services import GameServices
from tests.helpers import fake_generate


@pytest.fixture
def game_settings() -> GameSettings:
    return GameSettings(
        min_players=2,
        poll_interval_sec=0.05,
        leaderboard_poll_interval_sec=0.05,
        answer_retry_interval_sec=0.01,
        answer_signal_retries=3,
        own_answer_retries=15,
        answer_feedback_delay_sec=0.01,
        timeout_advance_delay_sec=0.01,
    )


@pytest.fixture
def settings(tmp_path, game_settings) -> Settings:
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'quizlobby.db'}"
    return Settings(
        postgres=PostgresSettings(database_url=db_url),
        game=game_settings,
    )


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
def store(session_maker) -> LobbyStore:
    return LobbyStore(session_maker, ChangeFeed())


@pytest.fixture
async def services(session_maker, settings):
    svc = GameServices.build(
        session_maker, settings, feed=ChangeFeed(), generate=fake_generate
    )
    svc.start()
    yield svc
    await svc.stop()

