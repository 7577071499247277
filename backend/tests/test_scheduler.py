import threading
import time

import pytest

from conftest import TestConfig
from flashcountry.client.peer import PvPPeer
from flashcountry.client.scheduler import SocketIOScheduler
from flashcountry.game.repository import RoomRepository
from flashcountry.game.service import RoomService
from flashcountry.store.document import DocumentStore


class OneSecondCountdown(TestConfig):
    COUNTDOWN_SEC = 1
    TIMER_TICK_SEC = 0.05


@pytest.fixture()
def real_scheduler(socketio):
    return SocketIOScheduler(socketio)


def test_call_later_fires_once(real_scheduler):
    fired = threading.Event()

    real_scheduler.call_later(0.01, fired.set)

    assert fired.wait(2)


def test_cancelled_call_later_never_fires(real_scheduler):
    fired = threading.Event()

    real_scheduler.call_later(0.05, fired.set).cancel()

    assert not fired.wait(0.3)


def test_call_every_repeats_until_cancelled(real_scheduler):
    ticks = []
    third = threading.Event()

    def tick():
        ticks.append(1)
        if len(ticks) == 1:
            raise RuntimeError("first tick blows up")
        if len(ticks) >= 3:
            third.set()

    handle = real_scheduler.call_every(0.01, tick)
    assert third.wait(2)
    handle.cancel()
    time.sleep(0.1)
    settled = len(ticks)
    time.sleep(0.1)

    assert len(ticks) == settled


def test_peers_reach_playing_on_real_timers(socketio, catalog):
    store = DocumentStore()
    both_playing = threading.Event()
    peers = []

    def listener(_peer):
        if len(peers) == 2 and all(p.state == "playing" for p in peers):
            both_playing.set()

    for peer_id in ("host", "guest"):
        service = RoomService(RoomRepository(store.connect()), OneSecondCountdown)
        peers.append(PvPPeer(
            service,
            peer_id,
            peer_id.title(),
            catalog,
            scheduler=SocketIOScheduler(socketio),
            config=OneSecondCountdown,
            listener=listener,
        ))
    host, guest = peers

    code = host.create_room()
    guest.join_room(code)
    host.mark_ready()
    guest.mark_ready()

    try:
        assert both_playing.wait(5)
        assert host.room.status == "playing"
        assert host.room.round_start_time is not None
    finally:
        guest.leave_room()
        host.leave_room()
