from __future__ import annotations

from ..store.document import SERVER_TIMESTAMP
from .models import Room
from .repository import RoomRepository


GRACE_STATES = ("waiting", "round_end")


def mark_present(repo: RoomRepository, code: str, peer_id: str) -> bool:
    """Flag ``peer_id`` connected and arm the backend-side disconnect write.

    The hook runs in the store when the session drops, so it also covers a
    client that crashed and never gets to clean up. Nothing is armed for a
    peer that is no longer in the room.
    """
    if not repo.update_player(code, peer_id, {"connected": True, "lastActivity": SERVER_TIMESTAMP}):
        return False
    repo.cancel_on_disconnect(code, peer_id)
    repo.on_disconnect(code, peer_id, {"connected": False})
    return True


def release_presence(repo: RoomRepository, code: str, peer_id: str) -> None:
    repo.cancel_on_disconnect(code, peer_id)


def heartbeat(repo: RoomRepository, code: str, peer_id: str) -> bool:
    return repo.update_player(code, peer_id, {"lastActivity": SERVER_TIMESTAMP})


def opponent_disconnected(room: Room, peer_id: str) -> bool:
    """A flagged opponent, or one who vanished from a match already under way."""
    opponent = room.opponent_of(peer_id)
    if opponent is None:
        return room.status not in ("waiting", "game_end") and peer_id in room.players
    return not opponent.connected


def needs_grace(local_state: str, room: Room, peer_id: str) -> bool:
    """Whether a forfeit grace countdown should run for ``peer_id``."""
    return local_state in GRACE_STATES and opponent_disconnected(room, peer_id)


def find_idle_players(room: Room, now_ms: int, threshold_sec: int = 60) -> list[str]:
    """Players whose heartbeat is older than ``threshold_sec``. Soft signal only."""
    idle = []
    for pid, p in room.players.items():
        if now_ms - (p.last_activity or 0) > threshold_sec * 1000:
            idle.append(pid)
    return idle
