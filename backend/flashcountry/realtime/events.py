from __future__ import annotations

import re
from typing import Any

from ..game.repository import ROOMS_ROOT


def _str(payload: dict, key: str) -> str:
    return str(payload.get(key, "") or "").strip()


def room_code_of(data: Any) -> str:
    return _str(data or {}, "roomCode").upper()


def validate_name(name: str) -> bool:
    n = (name or "").strip()
    if not n:
        return False
    if len(n) > 16:
        return False
    # Avoid obvious HTML/script injection.
    if "<" in n or ">" in n:
        return False
    # No control characters.
    for ch in n:
        if ord(ch) < 32:
            return False
    return True


def validate_peer_id(peer_id: str) -> bool:
    return bool(re.fullmatch(r"[A-Za-z0-9_\-]{1,64}", peer_id or ""))


def identity_of(data: Any) -> tuple[str, str] | None:
    """``(peerId, name)`` from a payload, or ``None`` if either is invalid."""
    payload = data or {}
    peer_id = _str(payload, "peerId")
    name = _str(payload, "name")
    if not validate_peer_id(peer_id) or not validate_name(name):
        return None
    return peer_id, name


def member_of(data: Any) -> tuple[str, str] | None:
    """``(roomCode, peerId)`` for an action on an existing seat, or ``None``."""
    payload = data or {}
    code = room_code_of(payload)
    peer_id = _str(payload, "peerId")
    if not code or not validate_peer_id(peer_id):
        return None
    return code, peer_id


def document_update_of(data: Any) -> tuple[str, dict] | None:
    """Validated ``(path, updates)`` for a raw ``doc:update`` under the rooms root."""
    payload = data or {}
    path = _str(payload, "path").strip("/")
    updates = payload.get("updates")
    if not path.startswith(ROOMS_ROOT + "/") or not isinstance(updates, dict) or not updates:
        return None
    if ".." in path or any(not isinstance(k, str) or ".." in k for k in updates):
        return None
    return path, updates


def error_payload(code: str) -> dict:
    return {"ok": False, "error": code}
