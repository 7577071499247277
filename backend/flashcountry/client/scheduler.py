from __future__ import annotations

import logging
from typing import Callable, Protocol

from flask_socketio import SocketIO


log = logging.getLogger(__name__)


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, fn: Callable[[], None]) -> Handle: ...

    def call_every(self, interval: float, fn: Callable[[], None]) -> Handle: ...


def _guarded(fn: Callable[[], None]) -> Callable[[], None]:
    def run() -> None:
        try:
            fn()
        except Exception:
            log.exception("timer callback %r failed", getattr(fn, "__name__", fn))

    return run


class _Task:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class SocketIOScheduler:
    """Timers as Socket.IO background tasks.

    ``start_background_task`` and ``socketio.sleep`` follow the server's async
    mode, so under eventlet the callbacks are green threads that never run
    concurrently. Under plain threading :class:`PvPPeer` serialises them
    itself.
    """

    def __init__(self, socketio: SocketIO) -> None:
        self.socketio = socketio

    def call_later(self, delay: float, fn: Callable[[], None]) -> Handle:
        task = _Task()
        run = _guarded(fn)

        def _runner() -> None:
            self.socketio.sleep(delay)
            if not task.cancelled:
                run()

        self.socketio.start_background_task(_runner)
        return task

    def call_every(self, interval: float, fn: Callable[[], None]) -> Handle:
        task = _Task()
        run = _guarded(fn)

        def _runner() -> None:
            while True:
                self.socketio.sleep(interval)
                if task.cancelled:
                    return
                run()

        self.socketio.start_background_task(_runner)
        return task


class TimerGroup:
    """Timers owned by one phase; cancelled together on every transition."""

    def __init__(self, scheduler: Scheduler) -> None:
        self.scheduler = scheduler
        self._handles: dict[str, Handle] = {}

    def every(self, name: str, interval: float, fn: Callable[[], None]) -> None:
        self.cancel(name)
        self._handles[name] = self.scheduler.call_every(interval, fn)

    def cancel(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for name in list(self._handles):
            self.cancel(name)
