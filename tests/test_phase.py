from __future__ import annotations

from datetime import datetime, timezone

from quizlobby.modules.lobby.models import Difficulty, Lobby, LobbyStatus
from quizlobby.modules.sync.client import _is_older
from quizlobby.modules.sync.phase import ClientPhase, PhaseState


def _lobby(status: LobbyStatus, index: int = 0) -> Lobby:
    return Lobby(
        id=1,
        pin="12345",
        host_id="h",
        host_username="H",
        topics=["x"],
        time_limit=10,
        num_questions=5,
        difficulty=Difficulty.MILD,
        status=status,
        current_question_index=index,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_flags_claim_once():
    st = PhaseState()
    assert st.claim_answer()
    assert not st.claim_answer()
    st.release_answer()
    assert st.claim_answer()

    assert st.claim_navigation()
    assert not st.claim_navigation()


def test_enter_resets_flags_and_bumps_epoch():
    st = PhaseState()
    st.claim_answer()
    st.claim_navigation()
    st.waiting_for_players = True
    old = st.epoch

    epoch = st.enter(ClientPhase.QUESTION, 2)
    assert epoch == old + 1
    assert st.is_current(epoch)
    assert not st.is_current(old)
    assert (st.answered, st.navigated, st.waiting_for_players) == (False, False, False)
    assert st.question_index == 2

    st.enter(ClientPhase.LEADERBOARD)
    assert st.question_index == 2
    assert st.phase == ClientPhase.LEADERBOARD


def test_stale_rows_are_detected():
    playing_2 = _lobby(LobbyStatus.PLAYING, 2)
    assert _is_older(_lobby(LobbyStatus.PLAYING, 1), playing_2)
    assert _is_older(_lobby(LobbyStatus.READY), playing_2)
    assert not _is_older(_lobby(LobbyStatus.PLAYING, 2), playing_2)
    assert not _is_older(_lobby(LobbyStatus.FINISHED, 2), playing_2)
    assert _is_older(playing_2, _lobby(LobbyStatus.FINISHED, 2))
    # Before the game starts any row is accepted
    assert not _is_older(_lobby(LobbyStatus.GENERATING), _lobby(LobbyStatus.READY))
