from flashcountry.game.models import PlayerState, Room
from flashcountry.game.scoring import (
    first_correct,
    is_correct_answer,
    normalize_answer,
    resolve_round,
    round_score,
)


def _player(pid, **kw):
    kw.setdefault("pseudo", pid)
    return PlayerState(id=pid, **kw)


def _room(*players, current_round=0):
    return Room(
        code="ABCDE",
        seed=1,
        status="playing",
        current_round=current_round,
        players={p.id: p for p in players},
    )


def test_normalize_strips_accents_case_and_space():
    assert normalize_answer("  Éspaña ") == "espana"
    assert normalize_answer(None) == ""


def test_correct_answer_matches_any_accepted_name():
    assert is_correct_answer("Francia", ["france", "francia"])
    assert not is_correct_answer("   ", ["france"])


def test_round_score_formula():
    assert round_score(True, 4.0, True) == 31
    assert round_score(True, 6.9, False) == 24
    assert round_score(True, 10.0, True) == 25
    assert round_score(False, 1.0, True) == 0
    assert round_score(True, 45.0, False) == 0


def test_first_correct_requires_strictly_faster_answer():
    a = _player("a", has_answered=True, is_correct=True, answer_time=3.0)
    b = _player("b", has_answered=True, is_correct=True, answer_time=3.0)
    c = _player("c", has_answered=True, is_correct=True, answer_time=5.0)
    wrong = _player("d", has_answered=True, is_correct=False, answer_time=1.0)

    assert first_correct([a, b]) is None
    assert first_correct([c, a]) == "a"
    assert first_correct([wrong, c]) == "c"
    assert first_correct([wrong]) is None


def test_resolve_round_scores_with_increments():
    host = _player("h", is_host=True, has_answered=True, answer="france", is_correct=True, answer_time=4.2)
    guest = _player("g", has_answered=True, answer="francia", is_correct=True, answer_time=6.0)

    resolution = resolve_round(_room(host, guest), "France")

    result = resolution.result
    assert result.players["h"].round_score == 31
    assert result.players["h"].was_first
    assert result.players["g"].round_score == 24
    assert resolution.updates["players/h/score"] == {".sv": {"increment": 31}}
    assert resolution.updates["status"] == "round_end"
    assert resolution.updates["lastRoundResult"]["correctAnswer"] == "France"


def test_tie_gives_no_bonus():
    host = _player("h", has_answered=True, answer="x", is_correct=True, answer_time=2.0)
    guest = _player("g", has_answered=True, answer="x", is_correct=True, answer_time=2.0)

    result = resolve_round(_room(host, guest), "X").result

    assert result.players["h"].round_score == 28
    assert result.players["g"].round_score == 28
    assert not any(p.was_first for p in result.players.values())


def test_silent_disconnected_player_is_forced_wrong():
    host = _player("h", has_answered=True, answer="chile", is_correct=True, answer_time=8.0)
    guest = _player("g", connected=False)

    resolution = resolve_round(_room(host, guest), "Chile")

    assert resolution.updates["players/g/hasAnswered"] is True
    assert resolution.updates["players/g/answer"] == ""
    assert resolution.updates["players/g/isCorrect"] is False
    assert "players/g/score" not in resolution.updates
    assert resolution.result.players["g"].round_score == 0
    assert resolution.result.players["h"].round_score == 27
