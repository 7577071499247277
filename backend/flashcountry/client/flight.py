from __future__ import annotations

from typing import Hashable


class SingleFlight:
    """Local guard so an authority action runs once per key.

    Repeated notifications of the same triggering condition arrive before our
    own write comes back; only the first one acquires the key. Keys are
    released together when the peer observes a state transition. This is a
    single-process guard, the backend transaction is the real fence.
    """

    def __init__(self) -> None:
        self._inflight: set[Hashable] = set()

    def acquire(self, key: Hashable) -> bool:
        if key in self._inflight:
            return False
        self._inflight.add(key)
        return True

    def release(self, key: Hashable) -> None:
        self._inflight.discard(key)

    def reset(self) -> None:
        self._inflight.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._inflight
