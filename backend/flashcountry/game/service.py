from __future__ import annotations

import logging
import random
import string

from ..config import Config
from ..store.document import SERVER_TIMESTAMP
from . import presence
from .errors import InvalidRoomCode, NotInRoom, RoomAlreadyStarted, RoomFull, RoomNotFound
from .models import END_OPPONENT_DISCONNECTED, DIFFICULTIES, Room, RoundResult, new_player_fields
from .repository import WHOLE_ROOM, RoomRepository
from .rounds import random_seed
from .scoring import resolve_round


log = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits

MATCH_STATES = ("countdown", "playing", "round_end")

_SCRATCH_RESET = {"hasAnswered": False, "answer": None, "answerTime": None, "isCorrect": None}


def generate_room_code(length: int = 5) -> str:
    return "".join(random.choices(ROOM_CODE_ALPHABET, k=length))


def validate_room_code(code: str, length: int = 5) -> str:
    """Normalize a user-typed code; raise :class:`InvalidRoomCode` if malformed."""
    c = (code or "").strip().upper()
    if len(c) != length or any(ch not in ROOM_CODE_ALPHABET for ch in c):
        raise InvalidRoomCode(f"invalid room code {code!r}", code=code)
    return c


class RoomService:
    """Room lifecycle and the authority writes of the round protocol.

    Every write that depends on the current room state runs as a store
    transaction, so a stale or duplicated request is a no-op instead of a
    corrupting write.
    """

    def __init__(self, repo: RoomRepository, config=Config) -> None:
        self.repo = repo
        self.config = config

    def now_ms(self) -> int:
        return self.repo.now_ms()

    def get_room(self, code: str) -> Room | None:
        return self.repo.get(code)

    # --- lifecycle ---------------------------------------------------------

    def _new_code(self) -> str:
        code = generate_room_code(self.config.ROOM_CODE_LENGTH)
        while self.repo.exists(code):
            code = generate_room_code(self.config.ROOM_CODE_LENGTH)
        return code

    def create_room(self, peer_id: str, display_name: str, is_private: bool = False, difficulty: str = "easy") -> str:
        if difficulty not in DIFFICULTIES:
            difficulty = "easy"
        code = self._new_code()
        seed = random_seed()
        player = new_player_fields(display_name, is_host=True)
        player["lastActivity"] = SERVER_TIMESTAMP
        self.repo.create(code, {
            "code": code,
            "seed": seed,
            "status": "waiting",
            "isPrivate": bool(is_private),
            "difficulty": difficulty,
            "createdAt": SERVER_TIMESTAMP,
            "currentRound": 0,
            "maxRounds": self.config.MAX_ROUNDS,
            "players": {peer_id: player},
        })
        log.info("room %s created by %s (private=%s seed=%s)", code, peer_id, is_private, seed)
        return code

    def join_room(self, code: str, peer_id: str, display_name: str) -> str:
        code = validate_room_code(code, self.config.ROOM_CODE_LENGTH)

        def _join(room: Room | None) -> dict | None:
            if room is None:
                raise RoomNotFound(code=code)
            if peer_id in room.players:
                return None
            if room.status != "waiting":
                raise RoomAlreadyStarted(code=code)
            if len(room.players) >= 2:
                raise RoomFull(code=code)
            player = new_player_fields(display_name, is_host=False)
            player["lastActivity"] = SERVER_TIMESTAMP
            return {f"players/{peer_id}": player}

        if self.repo.transaction(code, _join):
            log.info("room %s joined by %s", code, peer_id)
        return code

    def find_or_create_match(self, peer_id: str, display_name: str) -> str:
        for room in self.repo.waiting_public_rooms():
            if peer_id in room.players:
                continue
            try:
                return self.join_room(room.code, peer_id, display_name)
            except (RoomFull, RoomAlreadyStarted, RoomNotFound) as exc:
                log.info("matchmaking: %s lost room %s (%s), trying next", peer_id, room.code, exc.code)
                continue
        return self.create_room(peer_id, display_name, is_private=False)

    def leave_room(self, code: str, peer_id: str) -> None:
        def _leave(room: Room | None) -> dict | None:
            if room is None or peer_id not in room.players:
                return None
            if len(room.players) == 1:
                return {WHOLE_ROOM: None}
            updates: dict = {f"players/{peer_id}": None}
            remaining = room.opponent_of(peer_id)
            if room.players[peer_id].is_host:
                updates[f"players/{remaining.id}/isHost"] = True
            if room.status in MATCH_STATES:
                # walking out of a running match forfeits it
                updates.update({
                    "status": "game_end",
                    "winner": remaining.id,
                    "endReason": END_OPPONENT_DISCONNECTED,
                })
            return updates

        presence.release_presence(self.repo, code, peer_id)
        if self.repo.transaction(code, _leave):
            log.info("room %s left by %s", code, peer_id)

    def reap_stale_rooms(self, max_age_sec: int | None = None) -> list[str]:
        max_age_ms = (max_age_sec if max_age_sec is not None else self.config.ROOM_MAX_AGE_SEC) * 1000
        now = self.now_ms()
        reaped = []
        for code, raw in self.repo.raw_rooms().items():
            created_at = raw.get("createdAt", 0) if isinstance(raw, dict) else 0
            if not isinstance(created_at, (int, float)) or now - created_at > max_age_ms:
                self.repo.delete(code)
                reaped.append(code)
        if reaped:
            log.info("reaped %d stale rooms: %s", len(reaped), ", ".join(reaped))
        return reaped

    def list_open_rooms(self) -> list[Room]:
        return self.repo.waiting_public_rooms()

    # --- player actions ----------------------------------------------------

    def mark_ready(self, code: str, peer_id: str) -> None:
        if not self.repo.update_player(code, peer_id, {"ready": True, "lastActivity": SERVER_TIMESTAMP}):
            raise NotInRoom(code=code, peer_id=peer_id)

    def mark_present(self, code: str, peer_id: str) -> bool:
        return presence.mark_present(self.repo, code, peer_id)

    def heartbeat(self, code: str, peer_id: str) -> bool:
        return presence.heartbeat(self.repo, code, peer_id)

    def submit_answer(
        self,
        code: str,
        peer_id: str,
        raw_text: str,
        elapsed_seconds: float,
        is_correct: bool,
        round_start_time: int | None,
    ) -> bool:
        """Record an answer. ``answerTime`` is measured against the backend clock."""

        def _submit(room: Room | None) -> dict | None:
            if room is None:
                raise RoomNotFound(code=code)
            me = room.players.get(peer_id)
            if room.status != "playing" or me is None or me.has_answered:
                return None
            if round_start_time is not None and room.round_start_time != round_start_time:
                # answer for an earlier round
                return None
            if room.round_start_time is not None:
                answer_time = (self.now_ms() - room.round_start_time) / 1000
            else:
                answer_time = float(elapsed_seconds)
            return {
                f"players/{peer_id}/hasAnswered": True,
                f"players/{peer_id}/answer": raw_text,
                f"players/{peer_id}/answerTime": max(0.0, answer_time),
                f"players/{peer_id}/isCorrect": bool(is_correct),
                f"players/{peer_id}/lastActivity": SERVER_TIMESTAMP,
            }

        ok = self.repo.transaction(code, _submit)
        if ok:
            log.info("room %s: %s answered %r (correct=%s)", code, peer_id, raw_text, is_correct)
        return ok

    # --- authority writes --------------------------------------------------

    def start_countdown(self, code: str) -> bool:
        def _start(room: Room | None) -> dict | None:
            if room is None or room.status != "waiting" or not room.all_ready():
                return None
            return {"status": "countdown", "countdown": self.config.COUNTDOWN_SEC}

        ok = self.repo.transaction(code, _start)
        if ok:
            log.info("room %s: countdown started", code)
        return ok

    def set_countdown(self, code: str, seconds: int) -> bool:
        def _tick(room: Room | None) -> dict | None:
            if room is None or room.status != "countdown":
                return None
            return {"countdown": max(0, int(seconds))}

        return self.repo.transaction(code, _tick)

    def start_round(self, code: str, round_index: int) -> bool:
        def _start(room: Room | None) -> dict | None:
            if room is None or room.status != "countdown" or room.current_round != round_index:
                return None
            updates: dict = {
                "status": "playing",
                "currentRound": round_index,
                "gameConfig/roundStartTime": SERVER_TIMESTAMP,
            }
            for pid in room.players:
                for key, value in _SCRATCH_RESET.items():
                    updates[f"players/{pid}/{key}"] = value
                updates[f"players/{pid}/ready"] = False
            return updates

        ok = self.repo.transaction(code, _start)
        if ok:
            log.info("room %s: round %d started", code, round_index)
        return ok

    def finish_round(self, code: str, round_index: int, correct_answer: str) -> RoundResult | None:
        """Score round ``round_index`` once; later calls for the same round are no-ops."""
        resolved: list[RoundResult] = []

        def _finish(room: Room | None) -> dict | None:
            if room is None or room.status != "playing" or room.current_round != round_index:
                return None
            if not round_resolvable(room):
                return None
            resolution = resolve_round(
                room, correct_answer, base=self.config.BASE_SCORE, bonus=self.config.FIRST_BONUS
            )
            resolved.append(resolution.result)
            return resolution.updates

        if not self.repo.transaction(code, _finish):
            return None
        result = resolved[0]
        log.info(
            "room %s: round %d resolved (%s)",
            code,
            round_index,
            ", ".join(f"{pid}+{r.round_score}" for pid, r in result.players.items()),
        )
        return result

    def advance_round(self, code: str) -> bool:
        def _advance(room: Room | None) -> dict | None:
            if room is None or room.status != "round_end" or not room.all_ready() or room.is_last_round():
                return None
            updates: dict = {
                "status": "countdown",
                "countdown": self.config.COUNTDOWN_SEC,
                "currentRound": room.current_round + 1,
            }
            for pid in room.players:
                updates[f"players/{pid}/ready"] = False
            return updates

        ok = self.repo.transaction(code, _advance)
        if ok:
            log.info("room %s: advancing to next round", code)
        return ok

    def declare_forfeit(self, code: str, winner_id: str) -> bool:
        def _forfeit(room: Room | None) -> dict | None:
            if room is None or room.status == "game_end" or winner_id not in room.players:
                return None
            if not presence.opponent_disconnected(room, winner_id):
                return None
            return {"status": "game_end", "winner": winner_id, "endReason": END_OPPONENT_DISCONNECTED}

        ok = self.repo.transaction(code, _forfeit)
        if ok:
            log.info("room %s: %s wins by forfeit", code, winner_id)
        return ok


def round_resolvable(room: Room) -> bool:
    """Both answered, or one answered and every silent player is disconnected.

    A player who left mid-round has no entry left and does not hold it up.
    """
    answered = [p for p in room.players.values() if p.has_answered]
    if not answered:
        return False
    return all(p.has_answered or not p.connected for p in room.players.values())


def room_public_state(room: Room) -> dict:
    payload = room.to_dict()
    payload["playerCount"] = len(room.players)
    return payload
