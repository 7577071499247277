from __future__ import annotations

import logging
from typing import Any, Callable

from flask import request
from flask_socketio import SocketIO, emit, join_room, leave_room

from ..game.errors import NotInRoom, PvPError, RoomNotFound, SchemaError
from ..game.repository import RoomRepository
from ..game.rounds import CountryCatalog, generate_rounds
from ..game.scoring import is_correct_answer
from ..game.service import RoomService, room_public_state
from ..store.document import DocumentStore, Session
from . import events


log = logging.getLogger(__name__)


def register_socketio_handlers(
    socketio: SocketIO,
    store: DocumentStore,
    catalog: CountryCatalog,
    config,
) -> None:
    # one store session per socket: dropping the socket fires its on-disconnect writes
    sessions: dict[str, Session] = {}
    watches: dict[str, dict[str, Callable[[], None]]] = {}
    reaper = {"running": False}

    def _service(sid: str) -> RoomService:
        session = sessions.get(sid)
        if session is None:
            session = store.connect()
            sessions[sid] = session
        return RoomService(RoomRepository(session), config)

    def _run(action: Callable[[], dict]) -> dict:
        try:
            result = action()
        except PvPError as exc:
            emit("room:error", {"error": exc.code})
            return exc.to_payload()
        return {"ok": True, **result}

    def _invalid() -> dict:
        emit("room:error", {"error": "invalid_payload"})
        return events.error_payload("invalid_payload")

    def _enter(service: RoomService, code: str, peer_id: str) -> dict:
        join_room(code)
        service.mark_present(code, peer_id)
        return {"roomCode": code}

    def _ensure_reaper() -> None:
        if reaper["running"] or config.REAPER_INTERVAL_SEC <= 0:
            return
        reaper["running"] = True
        service = RoomService(RoomRepository(store.connect()), config)

        def _runner() -> None:
            while True:
                socketio.sleep(config.REAPER_INTERVAL_SEC)
                try:
                    service.reap_stale_rooms()
                except PvPError as exc:
                    log.warning("reaper pass failed: %s", exc.code)

        socketio.start_background_task(_runner)

    @socketio.on("connect")
    def on_connect():
        _ensure_reaper()

    @socketio.on("pvp:create")
    def pvp_create(data):
        ident = events.identity_of(data)
        if ident is None:
            return _invalid()
        peer_id, name = ident
        payload = data or {}
        service = _service(request.sid)

        def _create() -> dict:
            code = service.create_room(
                peer_id,
                name,
                is_private=bool(payload.get("isPrivate", True)),
                difficulty=str(payload.get("difficulty", "easy")),
            )
            return _enter(service, code, peer_id)

        return _run(_create)

    @socketio.on("pvp:join")
    def pvp_join(data):
        ident = events.identity_of(data)
        if ident is None:
            return _invalid()
        peer_id, name = ident
        code = events.room_code_of(data)
        service = _service(request.sid)

        def _join() -> dict:
            joined = service.join_room(code, peer_id, name)
            return _enter(service, joined, peer_id)

        return _run(_join)

    @socketio.on("pvp:quick_match")
    def pvp_quick_match(data):
        ident = events.identity_of(data)
        if ident is None:
            return _invalid()
        peer_id, name = ident
        service = _service(request.sid)

        def _match() -> dict:
            code = service.find_or_create_match(peer_id, name)
            return _enter(service, code, peer_id)

        return _run(_match)

    @socketio.on("pvp:ready")
    def pvp_ready(data):
        member = events.member_of(data)
        if member is None:
            return _invalid()
        code, peer_id = member
        service = _service(request.sid)

        def _ready() -> dict:
            service.mark_ready(code, peer_id)
            return {}

        return _run(_ready)

    @socketio.on("pvp:answer")
    def pvp_answer(data):
        member = events.member_of(data)
        if member is None:
            return _invalid()
        code, peer_id = member
        payload = data or {}
        text = str(payload.get("text", ""))
        service = _service(request.sid)

        def _answer() -> dict:
            room = service.get_room(code)
            if room is None:
                raise RoomNotFound(code=code)
            game = generate_rounds(room.seed, room.difficulty, catalog, images_per_round=config.IMAGES_PER_ROUND)
            country = catalog.get(game.rounds[room.current_round].country_name)
            correct = is_correct_answer(text, country.names)
            try:
                elapsed = float(payload.get("elapsed", 0))
            except (TypeError, ValueError):
                elapsed = 0.0
            accepted = service.submit_answer(code, peer_id, text, elapsed, correct, room.round_start_time)
            return {"accepted": accepted, "isCorrect": correct}

        return _run(_answer)

    @socketio.on("pvp:leave")
    def pvp_leave(data):
        member = events.member_of(data)
        if member is None:
            return _invalid()
        code, peer_id = member
        service = _service(request.sid)
        unsubscribe = watches.get(request.sid, {}).pop(code, None)
        if unsubscribe is not None:
            unsubscribe()
        leave_room(code)
        return _run(lambda: service.leave_room(code, peer_id) or {})

    @socketio.on("pvp:heartbeat")
    def pvp_heartbeat(data):
        member = events.member_of(data)
        if member is None:
            return _invalid()
        code, peer_id = member
        service = _service(request.sid)

        def _beat() -> dict:
            if not service.heartbeat(code, peer_id):
                raise NotInRoom(code=code, peer_id=peer_id)
            return {}

        return _run(_beat)

    @socketio.on("room:watch")
    def room_watch(data):
        code = events.room_code_of(data)
        if not code:
            return events.error_payload("invalid_room")
        sid = request.sid
        service = _service(sid)
        if code in watches.get(sid, {}):
            return {"ok": True}

        def _on_room(room) -> None:
            if room is None:
                socketio.emit("room:error", {"roomCode": code, "error": "room_not_found"}, to=sid)
                return
            socketio.emit("room:state", room_public_state(room), to=sid)

        def _on_invalid(exc: SchemaError) -> None:
            socketio.emit("room:error", {"roomCode": code, "error": exc.code}, to=sid)

        watches.setdefault(sid, {})[code] = service.repo.watch(code, _on_room, on_invalid=_on_invalid)
        return {"ok": True}

    @socketio.on("room:unwatch")
    def room_unwatch(data):
        code = events.room_code_of(data)
        unsubscribe = watches.get(request.sid, {}).pop(code, None)
        if unsubscribe is not None:
            unsubscribe()
        return {"ok": True}

    @socketio.on("doc:update")
    def doc_update(data: Any):
        parsed = events.document_update_of(data)
        if parsed is None:
            emit("room:error", {"error": "invalid_payload"})
            return events.error_payload("invalid_payload")
        path, updates = parsed
        session = sessions.get(request.sid) or _service(request.sid).repo.session
        return _run(lambda: session.update(path, updates) or {})

    @socketio.on("disconnect")
    def on_disconnect():
        sid = request.sid
        for unsubscribe in watches.pop(sid, {}).values():
            unsubscribe()
        session = sessions.pop(sid, None)
        if session is not None:
            session.drop()
            session.close()
