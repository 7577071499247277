from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from ..game.errors import InvalidRoomCode
from ..game.presence import find_idle_players
from ..game.service import RoomService, room_public_state, validate_room_code

bp = Blueprint("rooms", __name__)


def _rooms() -> RoomService:
    return current_app.extensions["flashcountry"]["rooms"]


@bp.get("/rooms")
def list_rooms():
    rooms = _rooms().list_open_rooms()
    return jsonify({
        "rooms": [
            {
                "code": room.code,
                "difficulty": room.difficulty,
                "host": room.host().pseudo if room.host() else None,
                "playerCount": len(room.players),
            }
            for room in rooms
        ]
    })


@bp.get("/rooms/<code>")
def get_room(code: str):
    service = _rooms()
    try:
        code = validate_room_code(code, service.config.ROOM_CODE_LENGTH)
    except InvalidRoomCode as exc:
        return jsonify({"error": exc.code}), 400
    room = service.get_room(code)
    if not room:
        return jsonify({"error": "room_not_found"}), 404
    payload = room_public_state(room)
    payload["idlePlayers"] = find_idle_players(room, service.now_ms(), service.config.IDLE_THRESHOLD_SEC)
    return jsonify(payload)
