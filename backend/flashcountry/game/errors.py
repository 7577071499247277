from __future__ import annotations


class PvPError(Exception):
    """Base class for failures surfaced to the caller of a PvP action."""

    code = "pvp_error"

    def __init__(self, message: str = "", **context) -> None:
        super().__init__(message or self.code)
        self.context = context

    def to_payload(self) -> dict:
        return {"ok": False, "error": self.code}


class RoomNotFound(PvPError):
    code = "room_not_found"


class RoomFull(PvPError):
    code = "room_full"


class RoomAlreadyStarted(PvPError):
    code = "room_already_started"


class InvalidRoomCode(PvPError):
    code = "invalid_room_code"


class StaleTransition(PvPError):
    """An out-of-order or regressing status update; dropped by the peer."""

    code = "stale_transition"

    def __init__(self, current: str, incoming: str) -> None:
        super().__init__(f"{current} -> {incoming}", current=current, incoming=incoming)
        self.current = current
        self.incoming = incoming


class BackendUnavailable(PvPError):
    code = "backend_unavailable"


class SchemaError(PvPError):
    code = "invalid_document"


class CatalogError(PvPError):
    code = "catalog_error"


class NotInRoom(PvPError):
    code = "not_in_room"
