from __future__ import annotations

import argparse
import asyncio
import json
import random
from typing import Optional

import httpx

from quizlobby.core.config import GameSettings
from quizlobby.core.logging import setup_logging
from quizlobby.modules.lobby.errors import LobbyError
from quizlobby.modules.lobby.models import Difficulty, LobbyStatus
from quizlobby.modules.sync.backend import HttpGameBackend
from quizlobby.modules.sync.client import GameSynchronizer
from quizlobby.modules.sync.phase import ClientPhase, PhaseChange


async def _post(base_url: str, path: str, body: dict) -> dict:
    async with httpx.AsyncClient(base_url=base_url, timeout=10.0) as client:
        resp = await client.post(path, json=body)
        if resp.status_code >= 400:
            raise SystemExit(f"{resp.status_code}: {resp.text}")
        return resp.json()


async def _wait_until_ready(
    backend: HttpGameBackend, lobby_id: int, interval: float = 1.0
) -> LobbyStatus:
    """Block while questions are generating; returns the status that ended the wait."""
    announced = False
    while True:
        lobby = await backend.get_lobby(lobby_id)
        if lobby.status != LobbyStatus.GENERATING:
            return lobby.status
        if not announced:
            print("Waiting for questions to be generated...")
            announced = True
        await asyncio.sleep(interval)


async def _start_as_host(
    sync: GameSynchronizer, backend: HttpGameBackend, lobby_id: int, interval: float = 1.0
) -> bool:
    status = await _wait_until_ready(backend, lobby_id, interval)
    if status == LobbyStatus.WAITING:
        print("Question generation failed; retry it before starting.")
        return False
    try:
        await sync.start_game()
    except (LobbyError, httpx.HTTPStatusError) as e:
        detail = e.response.text if isinstance(e, httpx.HTTPStatusError) else str(e)
        print(f"Cannot start the game: {detail}")
        return False
    return True


def _print_standings(change: PhaseChange) -> None:
    for rank, p in enumerate(change.players, start=1):
        print(f"  {rank}. {p.username:<20} {p.total_score}")


async def _play(args: argparse.Namespace) -> int:
    backend = HttpGameBackend(args.base_url, args.user_id, version=args.version)
    done = asyncio.Event()
    rng = random.Random()
    sync: Optional[GameSynchronizer] = None
    pending: set[asyncio.Task] = set()

    def _later(coro) -> None:
        # Keep the synchronizer's own loops free while we wait
        task = asyncio.create_task(coro)
        pending.add(task)
        task.add_done_callback(pending.discard)

    async def auto_answer() -> None:
        assert sync is not None
        await asyncio.sleep(rng.uniform(0.5, 2.0))
        result = await sync.answer(rng.choice(sync.choices))
        if result is not None:
            print(f"  -> {'correct' if result.is_correct else 'wrong'} (+{result.points})")

    async def auto_continue() -> None:
        assert sync is not None
        await asyncio.sleep(args.pause)
        await sync.continue_game()

    def on_phase(change: PhaseChange) -> None:
        assert sync is not None
        if change.phase == ClientPhase.QUESTION and sync.question is not None:
            print(f"\nQ{change.question_index + 1}: {sync.question.question_text}")
            for i, choice in enumerate(sync.choices, start=1):
                print(f"  {i}) {choice}")
            if args.auto:
                _later(auto_answer())
        elif change.phase == ClientPhase.LEADERBOARD:
            print("\nLeaderboard:")
            _print_standings(change)
            if sync.is_host and args.auto:
                _later(auto_continue())
        elif change.phase == ClientPhase.PODIUM:
            print("\nFinal standings:")
            _print_standings(change)
            done.set()

    sync = GameSynchronizer(
        backend,
        lobby_id=args.lobby_id,
        is_host=args.host,
        on_phase=on_phase,
        settings=GameSettings(),
        rng=rng,
    )
    try:
        await sync.start()
        if args.host and sync.phase == ClientPhase.LOBBY:
            if not await _start_as_host(sync, backend, args.lobby_id):
                return 1
        await done.wait()
    finally:
        for t in list(pending):
            t.cancel()
        await sync.stop()
        await backend.aclose()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="quizlobby", description="Quiz lobby client CLI")
    parser.add_argument("--base-url", default="http://localhost:9000")
    parser.add_argument("--version", default="v1", help="API version prefix")
    sub = parser.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("create", help="Create a lobby and print its PIN")
    c.add_argument("--user-id", required=True)
    c.add_argument("--username", required=True)
    c.add_argument("--topic", "-t", action="append", required=True, help="Repeatable")
    c.add_argument("--questions", type=int, default=10)
    c.add_argument("--time-limit", type=int, default=15)
    c.add_argument(
        "--difficulty", choices=[d.value for d in Difficulty], default=Difficulty.MILD.value
    )

    j = sub.add_parser("join", help="Join a lobby by PIN")
    j.add_argument("pin")
    j.add_argument("--user-id", required=True)
    j.add_argument("--username", required=True)

    p = sub.add_parser("play", help="Follow a lobby until the podium")
    p.add_argument("lobby_id", type=int)
    p.add_argument("--user-id", required=True)
    p.add_argument("--host", action="store_true", help="Start and advance the game")
    p.add_argument("--auto", action="store_true", help="Answer randomly and auto-advance")
    p.add_argument("--pause", type=float, default=3.0, help="Host pause on leaderboard")

    args = parser.parse_args(argv)
    setup_logging()
    prefix = f"/{args.version}"

    if args.cmd == "create":
        body = {
            "user_id": args.user_id,
            "username": args.username,
            "config": {
                "topics": args.topic,
                "num_questions": args.questions,
                "time_limit": args.time_limit,
                "difficulty": args.difficulty,
            },
        }
        data = asyncio.run(_post(args.base_url, f"{prefix}/lobbies", body))
        print(json.dumps(data, indent=2))
        return 0
    if args.cmd == "join":
        body = {"pin": args.pin, "user_id": args.user_id, "username": args.username}
        data = asyncio.run(_post(args.base_url, f"{prefix}/lobbies/join", body))
        print(json.dumps(data, indent=2))
        return 0
    if args.cmd == "play":
        return asyncio.run(_play(args))

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
