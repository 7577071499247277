from flashcountry.game.models import PlayerState
from flashcountry.game.timer import read_timer


def _p(pid, **kw):
    return PlayerState(id=pid, pseudo=pid, **kw)


def test_normal_deadline():
    reading = read_timer(12.5, _p("me"), _p("op"))

    assert reading.remaining == 17.5
    assert reading.display_seconds == 18
    assert not reading.stressed
    assert not reading.expired


def test_opponent_answer_shortens_my_deadline():
    opponent = _p("op", has_answered=True, answer_time=5.0)
    reading = read_timer(7.0, _p("me"), opponent)

    assert reading.stressed
    assert reading.deadline == 15.0
    assert reading.remaining == 8.0

    assert read_timer(15.0, _p("me"), opponent).expired


def test_disconnected_opponent_does_not_stress():
    opponent = _p("op", has_answered=True, answer_time=5.0, connected=False)
    reading = read_timer(7.0, _p("me"), opponent)

    assert not reading.stressed
    assert reading.deadline == 30


def test_late_opponent_answer_does_not_stress():
    opponent = _p("op", has_answered=True, answer_time=30.0)
    assert not read_timer(29.0, _p("me"), opponent).stressed


def test_after_my_answer_timer_is_informational():
    reading = read_timer(6.0, _p("me", has_answered=True, answer_time=4.0), _p("op"))

    assert reading.deadline == 14.0
    assert reading.remaining == 8.0
    assert not reading.expired


def test_both_answered():
    me = _p("me", has_answered=True, answer_time=4.0)
    op = _p("op", has_answered=True, answer_time=9.0)
    assert read_timer(10.0, me, op).remaining == 0


def test_expiry_at_round_end():
    assert read_timer(30.0, _p("me"), None).expired
