from flashcountry.game.models import PlayerState, Room
from flashcountry.game.presence import find_idle_players, needs_grace, opponent_disconnected


def test_mark_present_arms_disconnect_write(make_service):
    host = make_service()
    code = host.create_room("p1", "Alice")
    guest = make_service()
    guest.join_room(code, "p2", "Bob")
    guest.mark_present(code, "p2")

    guest.repo.session.drop()

    room = host.get_room(code)
    assert room.players["p2"].connected is False
    assert room.players["p1"].connected is True


def test_leave_cancels_disconnect_write(make_service):
    host = make_service()
    code = host.create_room("p1", "Alice")
    guest = make_service()
    guest.join_room(code, "p2", "Bob")
    guest.mark_present(code, "p2")

    guest.leave_room(code, "p2")
    guest.repo.session.drop()

    room = host.get_room(code)
    assert list(room.players) == ["p1"]


def test_heartbeat_refreshes_last_activity(make_service, clock):
    service = make_service()
    code = service.create_room("p1", "Alice")
    clock.now += 10_000

    service.heartbeat(code, "p1")

    assert service.get_room(code).players["p1"].last_activity == clock.now


def _room(guest_connected=True, guest_activity=None):
    return Room(
        code="ABCDE",
        seed=1,
        players={
            "h": PlayerState(id="h", pseudo="H", is_host=True, last_activity=100_000),
            "g": PlayerState(id="g", pseudo="G", connected=guest_connected, last_activity=guest_activity),
        },
    )


def test_grace_only_between_rounds():
    room = _room(guest_connected=False)
    assert needs_grace("waiting", room, "h")
    assert needs_grace("round_end", room, "h")
    assert not needs_grace("playing", room, "h")
    assert not needs_grace("waiting", _room(), "h")


def test_vanished_opponent_counts_as_disconnected_once_started():
    alone = {"h": PlayerState(id="h", pseudo="H", is_host=True)}
    lobby = Room(code="ABCDE", seed=1, players=alone)
    between_rounds = Room(code="ABCDE", seed=1, status="round_end", players=alone)

    assert not opponent_disconnected(lobby, "h")
    assert opponent_disconnected(between_rounds, "h")
    assert needs_grace("round_end", between_rounds, "h")


def test_idle_players():
    room = _room(guest_activity=100_000)
    assert find_idle_players(room, 150_000) == []
    assert sorted(find_idle_players(room, 160_001)) == ["g", "h"]
