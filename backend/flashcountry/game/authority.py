from __future__ import annotations

from .models import Room


def resolve_authority(room: Room) -> str | None:
    """Peer allowed to perform authority writes right now.

    The host, unless it is disconnected, in which case the sole connected
    player acts for this decision only. Recomputed at every decision point.
    """
    host = room.host()
    if host is not None and host.connected:
        return host.id
    connected = [p.id for p in room.players.values() if p.connected]
    if len(connected) == 1:
        return connected[0]
    return None


def is_authority(room: Room, peer_id: str) -> bool:
    return resolve_authority(room) == peer_id
