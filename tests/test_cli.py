from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from quizlobby.modules.lobby.errors import NotEnoughPlayersError
from quizlobby.modules.lobby.models import LobbyStatus
from quizlobby.modules.sync import cli


@pytest.fixture
def posts(monkeypatch):
    calls = []

    async def fake_post(base_url, path, body):
        calls.append((base_url, path, body))
        return {"pin": "12345"}

    monkeypatch.setattr(cli, "_post", fake_post)
    return calls


def test_create_posts_config(posts, capsys):
    code = cli.main(
        [
            "--base-url", "http://quiz:9000",
            "create", "--user-id", "u1", "--username", "Ann",
            "-t", "space", "-t", "jazz", "--questions", "3", "--difficulty", "spicy",
        ]
    )
    assert code == 0
    base_url, path, body = posts[0]
    assert (base_url, path) == ("http://quiz:9000", "/v1/lobbies")
    assert body["config"] == {
        "topics": ["space", "jazz"],
        "num_questions": 3,
        "time_limit": 15,
        "difficulty": "spicy",
    }
    assert json.loads(capsys.readouterr().out) == {"pin": "12345"}


def test_join_uses_version_prefix(posts):
    assert cli.main(["--version", "v2", "join", "54321", "--user-id", "u", "--username", "U"]) == 0
    _, path, body = posts[0]
    assert path == "/v2/lobbies/join"
    assert body == {"pin": "54321", "user_id": "u", "username": "U"}


@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["create", "--user-id", "u", "--username", "U"],
        ["create", "--user-id", "u", "--username", "U", "-t", "x", "--difficulty", "mild-ish"],
        ["play", "not-a-number", "--user-id", "u"],
    ],
)
def test_bad_arguments_exit(argv, posts):
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    assert exc.value.code == 2
    assert posts == []


class StatusBackend:
    """Answers get_lobby with a scripted run of statuses."""

    def __init__(self, *statuses: LobbyStatus) -> None:
        self.statuses = list(statuses)

    async def get_lobby(self, lobby_id):
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return SimpleNamespace(status=status)


class HostSync:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.started = False

    async def start_game(self):
        if self.error is not None:
            raise self.error
        self.started = True


async def test_host_waits_for_generation_before_starting(capsys):
    backend = StatusBackend(LobbyStatus.GENERATING, LobbyStatus.GENERATING, LobbyStatus.READY)
    sync = HostSync()
    assert await cli._start_as_host(sync, backend, 1, interval=0)
    assert sync.started
    assert "Waiting for questions" in capsys.readouterr().out


async def test_host_start_reports_failed_generation(capsys):
    sync = HostSync()
    assert not await cli._start_as_host(sync, StatusBackend(LobbyStatus.WAITING), 1, interval=0)
    assert not sync.started
    assert "generation failed" in capsys.readouterr().out


async def test_host_start_prints_lobby_errors(capsys):
    sync = HostSync(NotEnoughPlayersError(1, 2))
    assert not await cli._start_as_host(sync, StatusBackend(LobbyStatus.READY), 1, interval=0)
    assert "at least 2 players" in capsys.readouterr().out
