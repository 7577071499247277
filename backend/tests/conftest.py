import heapq
import itertools
import logging
import os

import pytest

os.environ.setdefault("SOCKETIO_ASYNC_MODE", "threading")

from flashcountry.client.peer import PvPPeer
from flashcountry.config import Config
from flashcountry.game.repository import RoomRepository
from flashcountry.game.rounds import CountryCatalog, ImageHost
from flashcountry.game.service import RoomService
from flashcountry.store.document import DocumentStore


log = logging.getLogger(__name__)

START_MS = 1_700_000_000_000


class TestConfig(Config):
    __test__ = False

    TESTING = True
    SECRET_KEY = "test-secret"
    TRUST_PROXY_HEADERS = False
    CATALOG_PATH = ""
    IMAGE_BASE_URL = "https://img.test"
    REAPER_INTERVAL_SEC = 0


class FakeClock:
    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


class _FakeHandle:
    def __init__(self, due, interval, fn):
        self.due = due
        self.interval = interval
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Virtual-time scheduler driven by :meth:`advance`."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self._heap = []
        self._seq = itertools.count()

    def _push(self, handle):
        heapq.heappush(self._heap, (handle.due, next(self._seq), handle))

    def call_later(self, delay, fn):
        handle = _FakeHandle(self.clock.now + round(delay * 1000), None, fn)
        self._push(handle)
        return handle

    def call_every(self, interval, fn):
        ms = round(interval * 1000)
        handle = _FakeHandle(self.clock.now + ms, ms, fn)
        self._push(handle)
        return handle

    def advance(self, seconds: float) -> None:
        target = self.clock.now + round(seconds * 1000)
        while self._heap and self._heap[0][0] <= target:
            due, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self.clock.now = max(self.clock.now, due)
            if handle.interval is not None:
                handle.due = due + handle.interval
                self._push(handle)
            try:
                handle.fn()
            except Exception:
                log.exception("fake timer callback failed")
        self.clock.now = target


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture()
def store(clock):
    return DocumentStore(clock=clock)


@pytest.fixture()
def catalog():
    return CountryCatalog.load(None, ImageHost("https://img.test"))


@pytest.fixture()
def make_service(store):
    def _make(config=TestConfig):
        return RoomService(RoomRepository(store.connect()), config)

    return _make


@pytest.fixture()
def make_peer(store, scheduler, catalog):
    def _make(peer_id, name=None, config=TestConfig):
        service = RoomService(RoomRepository(store.connect()), config)
        return PvPPeer(service, peer_id, name or peer_id.title(), catalog, scheduler=scheduler, config=config)

    return _make


@pytest.fixture()
def server():
    from flashcountry.server import create_app

    return create_app(TestConfig)


@pytest.fixture()
def flask_app(server):
    return server[0]


@pytest.fixture()
def socketio(server):
    return server[1]


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_sio_client(flask_app, socketio):
    clients = []

    def _make():
        test_client = socketio.test_client(flask_app, flask_test_client=flask_app.test_client())
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        if test_client.is_connected():
            test_client.disconnect()
