from dataclasses import replace

import pytest

from conftest import TestConfig
from flashcountry.game.errors import InvalidRoomCode, RoomNotFound
from flashcountry.game.repository import room_path


class TwoRoundConfig(TestConfig):
    MAX_ROUNDS = 2


def _lobby(make_peer, config=TestConfig):
    host = make_peer("host", "Alice", config=config)
    guest = make_peer("guest", "Bob", config=config)
    code = host.create_room()
    guest.join_room(code)
    return host, guest, code


def _names(peer):
    room = peer.room
    country = peer.catalog.get(peer.game.rounds[room.current_round].country_name)
    return country.names


def _start_round(scheduler, host, guest):
    host.mark_ready()
    guest.mark_ready()
    assert host.state == guest.state == "countdown"
    scheduler.advance(3)
    assert host.state == guest.state == "playing"


def test_lobby(make_peer):
    host, guest, code = _lobby(make_peer)

    assert host.state == guest.state == "waiting"
    assert host.room_code == guest.room_code == code
    assert host.opponent.pseudo == "Bob"
    assert guest.opponent.pseudo == "Alice"
    assert guest.room.players["guest"].connected


def test_failed_join_stays_in_menu(make_peer):
    peer = make_peer("p1")

    with pytest.raises(RoomNotFound):
        peer.join_room("ZZZZZ")
    with pytest.raises(InvalidRoomCode):
        peer.join_room("nope")

    assert peer.state == "menu"
    assert peer.room_code is None


def test_full_match(make_peer, scheduler):
    host, guest, code = _lobby(make_peer, config=TwoRoundConfig)

    _start_round(scheduler, host, guest)
    assert host.game.countries == guest.game.countries
    names = _names(host)

    scheduler.advance(4)
    assert host.submit_answer(names[0].upper())
    assert guest.stressed
    scheduler.advance(2)
    assert guest.submit_answer(names[-1])

    assert host.state == guest.state == "round_end"
    assert host.room.players["host"].score == 31
    assert host.room.players["guest"].score == 24
    assert host.round_end.result.players["host"].was_first
    assert guest.round_end.round_number == 1

    _start_round(scheduler, host, guest)
    assert host.room.current_round == 1
    assert not host.has_answered
    assert host.last_answer_correct is None

    scheduler.advance(2)
    host.submit_answer("atlantis")
    assert host.last_answer_correct is False
    scheduler.advance(8)
    guest.submit_answer(_names(guest)[0])

    assert host.state == "round_end"
    assert host.room.players["host"].score == 31
    assert host.room.players["guest"].score == 49

    host.mark_ready()
    assert host.state == "game_end"
    assert guest.state == "round_end"
    guest.mark_ready()
    assert guest.state == "game_end"

    assert host.outcome.winner == "guest"
    assert host.outcome.my_score == 31
    assert host.outcome.opponent_score == 49
    assert guest.outcome.winner == "guest"
    assert guest.outcome.opponent_pseudo == "Alice"


def test_both_time_out(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)

    scheduler.advance(29.9)
    assert host.state == "playing"
    scheduler.advance(0.1)

    assert host.state == guest.state == "round_end"
    result = host.room.last_round_result
    assert all(p.answer == "" and not p.is_correct for p in result.players.values())
    assert all(p.score == 0 for p in host.room.players.values())


def test_opponent_answer_shortens_deadline(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)

    scheduler.advance(5)
    host.submit_answer(_names(host)[0])
    scheduler.advance(9.9)
    assert guest.state == "playing"
    assert guest.stressed
    assert guest.timer.deadline == 15.0

    scheduler.advance(0.1)
    assert guest.state == "round_end"
    assert host.room.players["host"].score == 30
    assert host.room.players["guest"].score == 0


def test_current_image_rotates(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)

    scheduler.advance(0.8)

    assert host.current_image() == host.game.rounds[0].images[10]
    assert guest.current_image() == host.current_image()


def test_regressing_status_is_ignored(make_peer, scheduler, store):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)

    store.update(room_path(code), {"status": "waiting"})

    assert host.state == guest.state == "playing"


def test_replayed_snapshot_does_not_rescore(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)
    scheduler.advance(3)
    host.submit_answer(_names(host)[0])
    guest.submit_answer(_names(guest)[0])
    assert host.state == "round_end"
    scores = {pid: p.score for pid, p in host.room.players.items()}

    host._on_snapshot(replace(host.room, status="playing"))
    host._on_snapshot(replace(host.room, status="playing"))

    assert host.state == "round_end"
    assert {pid: p.score for pid, p in host.service.get_room(code).players.items()} == scores


def test_authority_passes_to_connected_player(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)

    host.service.repo.session.drop()
    assert guest.room.players["host"].connected is False

    scheduler.advance(3)
    guest.submit_answer(_names(guest)[0])

    assert guest.state == "round_end"
    room = guest.room
    assert room.players["guest"].score == 32
    assert room.last_round_result.players["host"].answer == ""


def test_forfeit_after_grace_in_round_end(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)
    scheduler.advance(1)
    host.submit_answer(_names(host)[0])
    guest.submit_answer(_names(guest)[0])
    assert host.state == "round_end"

    guest.service.repo.session.drop()
    assert host.grace_remaining == 30

    scheduler.advance(29.9)
    assert host.state == "round_end"
    scheduler.advance(0.1)

    assert host.state == "game_end"
    assert host.room.winner == "host"
    assert host.outcome.reason == "opponent_disconnected"
    assert host.outcome.winner == "host"


def test_forfeit_in_lobby(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)

    guest.service.repo.session.drop()
    scheduler.advance(30)

    assert host.state == "game_end"
    assert host.outcome.winner == "host"


def test_reconnection_cancels_forfeit(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)

    guest.service.repo.session.drop()
    assert host.grace_deadline_ms is not None
    scheduler.advance(10)
    guest.resume()

    assert host.grace_deadline_ms is None
    scheduler.advance(30)
    assert host.state == "waiting"
    assert host.room.status == "waiting"
    assert host.room.players["guest"].connected


def test_no_grace_while_playing(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)

    guest.service.repo.session.drop()

    assert host.grace_deadline_ms is None


def test_host_leaving_promotes_guest(make_peer):
    host, guest, code = _lobby(make_peer)

    host.leave_room()

    assert host.state == "menu"
    assert host.room_code is None
    assert guest.room.players["guest"].is_host
    assert list(guest.room.players) == ["guest"]


def test_deleted_room_returns_to_menu(make_peer, store):
    host, guest, code = _lobby(make_peer)

    store.remove(room_path(code))

    assert host.state == guest.state == "menu"
    assert host.error == "room_not_found"


def test_listener_sees_state_changes(make_peer):
    seen = []
    host = make_peer("host")
    host.listener = lambda peer: seen.append(peer.state)

    host.create_room()

    assert seen[-1] == "waiting"


def test_opponent_walking_out_of_countdown_ends_match(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    host.mark_ready()
    guest.mark_ready()
    assert host.state == "countdown"

    guest.leave_room()
    scheduler.advance(660)

    assert host.state == "game_end"
    assert host.outcome.winner == "host"
    assert host.outcome.reason == "opponent_disconnected"
    assert list(host.room.players) == ["host"]


def test_opponent_walking_out_mid_round_ends_match(make_peer, scheduler):
    host, guest, code = _lobby(make_peer)
    _start_round(scheduler, host, guest)

    host.leave_room()

    assert guest.state == "game_end"
    assert guest.outcome.winner == "guest"
    assert guest.room.players["guest"].is_host


def test_malformed_snapshot_sets_error(make_peer, store):
    host, guest, code = _lobby(make_peer)

    store.update(room_path(code, "players", "ghost"), {"lastActivity": 1})

    assert host.error == "invalid_document"
    assert host.state == "waiting"

    store.remove(room_path(code, "players", "ghost"))

    assert host.error is None
    assert guest.error is None
