from __future__ import annotations

import logging
from typing import Any, Callable

from ..store.document import Session, join_path
from .errors import RoomNotFound, SchemaError
from .models import Room


log = logging.getLogger(__name__)

ROOMS_ROOT = "pvp_rooms"
# update key addressing the room document itself
WHOLE_ROOM = ""


def room_path(code: str, *parts: str) -> str:
    return join_path(ROOMS_ROOT, code, *parts)


def player_path(code: str, peer_id: str, *parts: str) -> str:
    return room_path(code, "players", peer_id, *parts)


def parse_room(raw: Any) -> Room | None:
    if raw is None:
        return None
    return Room.from_dict(raw)


class RoomRepository:
    """Typed access to ``pvp_rooms/*`` for one store session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def now_ms(self) -> int:
        return self.session.now_ms()

    def get(self, code: str) -> Room | None:
        return parse_room(self.session.get(room_path(code)))

    def exists(self, code: str) -> bool:
        return self.session.get(room_path(code, "code")) is not None

    def create(self, code: str, document: dict) -> None:
        self.session.set(room_path(code), document)

    def update(self, code: str, updates: dict) -> None:
        self.session.update(room_path(code), updates)

    def update_player(self, code: str, peer_id: str, fields: dict) -> bool:
        """Write ``fields`` on a current member only.

        Returns False when ``peer_id`` is not in the room, so a late write
        from a player who left never recreates a partial player entry.
        """

        def _update(room: Room | None) -> dict | None:
            if room is None:
                raise RoomNotFound(code=code)
            if peer_id not in room.players:
                return None
            return {f"players/{peer_id}/{key}": value for key, value in fields.items()}

        return self.transaction(code, _update)

    def delete(self, code: str) -> None:
        self.session.remove(room_path(code))

    def transaction(self, code: str, fn: Callable[[Room | None], dict | None]) -> bool:
        """Compare-and-set on a room: ``fn`` sees the typed current room."""
        return self.session.transaction(room_path(code), lambda raw: fn(parse_room(raw)))

    def watch(
        self,
        code: str,
        callback: Callable[[Room | None], None],
        on_invalid: Callable[[SchemaError], None] | None = None,
    ) -> Callable[[], None]:
        """Stream typed snapshots; malformed ones go to ``on_invalid`` instead."""

        def _on_value(raw: Any) -> None:
            try:
                room = parse_room(raw)
            except SchemaError as exc:
                log.warning("room %s: malformed snapshot (%s)", code, exc)
                if on_invalid is not None:
                    on_invalid(exc)
                return
            callback(room)

        return self.session.subscribe(room_path(code), _on_value)

    def on_disconnect(self, code: str, peer_id: str, fields: dict) -> None:
        self.session.on_disconnect(player_path(code, peer_id), fields)

    def cancel_on_disconnect(self, code: str, peer_id: str) -> None:
        self.session.cancel_on_disconnect(player_path(code, peer_id))

    def raw_rooms(self) -> dict[str, Any]:
        return self.session.children(ROOMS_ROOT)

    def rooms(self) -> list[Room]:
        out = []
        for code, raw in self.raw_rooms().items():
            try:
                out.append(Room.from_dict(raw))
            except SchemaError as exc:
                log.warning("room %s: skipping malformed document (%s)", code, exc)
        return out

    def waiting_public_rooms(self) -> list[Room]:
        return [
            r for r in self.rooms()
            if r.status == "waiting" and not r.is_private and len(r.players) == 1
        ]
