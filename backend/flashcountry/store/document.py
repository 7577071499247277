"""In-process shared document store.

A path-addressable JSON tree with the primitives the PvP protocol relies on:

* atomic multi-path ``update`` (all paths land in one write, one notification);
* ``transaction`` (read-check-write under the store lock, used as compare-and-set);
* change subscriptions delivered in write order through a FIFO dispatch queue;
* server sentinels (``SERVER_TIMESTAMP``, ``increment``) resolved at write time;
* per-session on-disconnect writes executed by the store when a session drops.

Clients never touch :class:`DocumentStore` directly; they hold a :class:`Session`.
"""
from __future__ import annotations

import copy
import logging
import time
import uuid
from collections import deque
from threading import RLock
from typing import Any, Callable

from ..game.errors import BackendUnavailable


log = logging.getLogger(__name__)

SERVER_TIMESTAMP = {".sv": "timestamp"}

Listener = Callable[[Any], None]


def increment(delta: int) -> dict:
    return {".sv": {"increment": delta}}


def now_ms() -> int:
    return int(time.time() * 1000)


def split_path(path: str) -> list[str]:
    return [p for p in (path or "").strip("/").split("/") if p]


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def _is_related(a: list[str], b: list[str]) -> bool:
    n = min(len(a), len(b))
    return a[:n] == b[:n]


def _clean(value: Any) -> Any:
    # Null children are absent; empty objects collapse to absent.
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            cv = _clean(v)
            if cv is not None:
                out[str(k)] = cv
        return out or None
    return value


class _Subscription:
    def __init__(self, path: list[str], callback: Listener, session: "Session") -> None:
        self.path = path
        self.callback = callback
        self.session = session
        self.active = True


class DocumentStore:
    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or now_ms
        self._lock = RLock()
        self._data: dict = {}
        self._subs: list[_Subscription] = []
        self._hooks: dict[str, list[tuple[list[str], dict]]] = {}
        self._queue: deque = deque()
        self._dispatching = False

    def now_ms(self) -> int:
        return int(self._clock())

    def connect(self) -> "Session":
        return Session(self)

    # --- reads -------------------------------------------------------------

    def _node(self, parts: list[str]) -> Any:
        node: Any = self._data
        for p in parts:
            if not isinstance(node, dict) or p not in node:
                return None
            node = node[p]
        return node

    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._node(split_path(path)))

    def children(self, path: str) -> dict:
        value = self.get(path)
        return value if isinstance(value, dict) else {}

    # --- writes ------------------------------------------------------------

    def _resolve(self, value: Any, parts: list[str]) -> Any:
        if isinstance(value, dict):
            sv = value.get(".sv") if len(value) == 1 else None
            if sv == "timestamp":
                return self.now_ms()
            if isinstance(sv, dict) and "increment" in sv:
                current = self._node(parts)
                base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
                return base + sv["increment"]
            return {k: self._resolve(v, parts + [str(k)]) for k, v in value.items()}
        return value

    def _put(self, parts: list[str], value: Any) -> None:
        value = _clean(self._resolve(value, parts))
        if not parts:
            self._data = value if isinstance(value, dict) else {}
            return

        if value is None:
            trail = []
            node: Any = self._data
            for p in parts[:-1]:
                if not isinstance(node, dict) or p not in node:
                    return
                trail.append((node, p))
                node = node[p]
            if isinstance(node, dict):
                node.pop(parts[-1], None)
            # prune parents left empty
            for parent, key in reversed(trail):
                if parent[key] == {}:
                    del parent[key]
                else:
                    break
            return

        node = self._data
        for p in parts[:-1]:
            nxt = node.get(p)
            if not isinstance(nxt, dict):
                nxt = {}
                node[p] = nxt
            node = nxt
        node[parts[-1]] = value

    def _apply(self, writes: list[tuple[list[str], Any]]) -> None:
        with self._lock:
            for parts, value in writes:
                self._put(parts, value)
            touched = [parts for parts, _ in writes]
            for sub in self._subs:
                if not sub.active or not sub.session.online:
                    continue
                if any(_is_related(sub.path, t) for t in touched):
                    self._queue.append((sub, copy.deepcopy(self._node(sub.path))))

    def _commit(self, writes: list[tuple[list[str], Any]]) -> None:
        self._apply(writes)
        self._drain()

    def set(self, path: str, value: Any) -> None:
        self._commit([(split_path(path), value)])

    def remove(self, path: str) -> None:
        self._commit([(split_path(path), None)])

    def update(self, path: str, updates: dict) -> None:
        base = split_path(path)
        self._commit([(base + split_path(k), v) for k, v in updates.items()])

    def transaction(self, path: str, fn: Callable[[Any], dict | None]) -> bool:
        """Run ``fn(current)`` under the store lock; apply its updates, if any.

        ``fn`` returns a mapping of relative paths to values (same shape as
        :meth:`update`) or ``None`` to abort. Exceptions raised by ``fn``
        propagate and nothing is written.
        """
        base = split_path(path)
        with self._lock:
            current = copy.deepcopy(self._node(base))
            updates = fn(current)
            if updates is None:
                return False
            self._apply([(base + split_path(k), v) for k, v in updates.items()])
        self._drain()
        return True

    # --- subscriptions -----------------------------------------------------

    def _subscribe(self, path: str, callback: Listener, session: "Session") -> Callable[[], None]:
        sub = _Subscription(split_path(path), callback, session)
        with self._lock:
            self._subs.append(sub)
            self._queue.append((sub, copy.deepcopy(self._node(sub.path))))
        self._drain()

        def unsubscribe() -> None:
            with self._lock:
                sub.active = False
                if sub in self._subs:
                    self._subs.remove(sub)

        return unsubscribe

    def _redeliver(self, session: "Session") -> None:
        with self._lock:
            for sub in self._subs:
                if sub.active and sub.session is session:
                    self._queue.append((sub, copy.deepcopy(self._node(sub.path))))
        self._drain()

    def _drain(self) -> None:
        with self._lock:
            if self._dispatching:
                return
            self._dispatching = True
        try:
            while True:
                with self._lock:
                    # cleared under the lock that saw the queue empty
                    if not self._queue:
                        self._dispatching = False
                        return
                    sub, value = self._queue.popleft()
                if not sub.active or not sub.session.online:
                    continue
                try:
                    sub.callback(value)
                except Exception:
                    log.exception("listener on /%s failed", "/".join(sub.path))
        except BaseException:
            with self._lock:
                self._dispatching = False
            raise

    # --- presence ----------------------------------------------------------

    def _register_hook(self, session: "Session", path: str, updates: dict) -> None:
        with self._lock:
            self._hooks.setdefault(session.id, []).append((split_path(path), dict(updates)))

    def _cancel_hooks(self, session: "Session", path: str | None = None) -> None:
        with self._lock:
            if path is None:
                self._hooks.pop(session.id, None)
                return
            parts = split_path(path)
            kept = [h for h in self._hooks.get(session.id, []) if h[0] != parts]
            self._hooks[session.id] = kept

    def _run_hooks(self, session: "Session") -> None:
        with self._lock:
            hooks = self._hooks.pop(session.id, [])
        for parts, updates in hooks:
            log.debug("on-disconnect write for session %s at /%s", session.id, "/".join(parts))
            self._commit([(parts + split_path(k), v) for k, v in updates.items()])


class Session:
    """One client's connection to the store."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.id = uuid.uuid4().hex
        self.online = True
        self._unsubscribers: list[Callable[[], None]] = []

    def _ensure_online(self) -> None:
        if not self.online:
            raise BackendUnavailable("session offline", session=self.id)

    def now_ms(self) -> int:
        return self.store.now_ms()

    def get(self, path: str) -> Any:
        self._ensure_online()
        return self.store.get(path)

    def children(self, path: str) -> dict:
        self._ensure_online()
        return self.store.children(path)

    def set(self, path: str, value: Any) -> None:
        self._ensure_online()
        self.store.set(path, value)

    def update(self, path: str, updates: dict) -> None:
        self._ensure_online()
        self.store.update(path, updates)

    def remove(self, path: str) -> None:
        self._ensure_online()
        self.store.remove(path)

    def transaction(self, path: str, fn: Callable[[Any], dict | None]) -> bool:
        self._ensure_online()
        return self.store.transaction(path, fn)

    def subscribe(self, path: str, callback: Listener) -> Callable[[], None]:
        self._ensure_online()
        unsubscribe = self.store._subscribe(path, callback, self)
        self._unsubscribers.append(unsubscribe)
        return unsubscribe

    def on_disconnect(self, path: str, updates: dict) -> None:
        self._ensure_online()
        self.store._register_hook(self, path, updates)

    def cancel_on_disconnect(self, path: str | None = None) -> None:
        self.store._cancel_hooks(self, path)

    def drop(self) -> None:
        """Connection lost: the store runs this session's on-disconnect writes."""
        if not self.online:
            return
        self.online = False
        self.store._run_hooks(self)

    def reconnect(self) -> None:
        if self.online:
            return
        self.online = True
        self.store._redeliver(self)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.store._cancel_hooks(self)
