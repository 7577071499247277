from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from .errors import SchemaError


RoomState = Literal["waiting", "countdown", "playing", "round_end", "game_end"]
LocalState = Literal["menu", "waiting", "countdown", "playing", "round_end", "game_end"]

ROOM_STATES: tuple[str, ...] = ("waiting", "countdown", "playing", "round_end", "game_end")
STATE_ORDER: tuple[str, ...] = ("menu",) + ROOM_STATES
DIFFICULTIES: tuple[str, ...] = ("easy", "medium", "hard")

END_OPPONENT_DISCONNECTED = "opponent_disconnected"


def _expect(raw: dict, key: str, kinds: tuple[type, ...], default: Any = None, required: bool = False) -> Any:
    if key not in raw or raw[key] is None:
        if required:
            raise SchemaError(f"missing field {key!r}", field=key)
        return default
    value = raw[key]
    # bool is an int subclass; reject it where a number is expected
    if isinstance(value, bool) and bool not in kinds:
        raise SchemaError(f"field {key!r} has type bool", field=key)
    if not isinstance(value, kinds):
        raise SchemaError(f"field {key!r} has type {type(value).__name__}", field=key)
    return value


@dataclass(frozen=True)
class PlayerState:
    id: str
    pseudo: str
    is_host: bool = False
    ready: bool = False
    score: int = 0
    has_answered: bool = False
    answer: str | None = None
    answer_time: float | None = None
    is_correct: bool | None = None
    connected: bool = True
    last_activity: int | None = None

    @classmethod
    def from_dict(cls, player_id: str, raw: Any) -> "PlayerState":
        if not isinstance(raw, dict):
            raise SchemaError(f"player {player_id!r} is not an object", field="players")
        score = _expect(raw, "score", (int, float), 0)
        answer_time = _expect(raw, "answerTime", (int, float))
        return cls(
            id=player_id,
            pseudo=_expect(raw, "pseudo", (str,), required=True),
            is_host=_expect(raw, "isHost", (bool,), False),
            ready=_expect(raw, "ready", (bool,), False),
            score=int(score),
            has_answered=_expect(raw, "hasAnswered", (bool,), False),
            answer=_expect(raw, "answer", (str,)),
            answer_time=float(answer_time) if answer_time is not None else None,
            is_correct=_expect(raw, "isCorrect", (bool,)),
            connected=_expect(raw, "connected", (bool,), True),
            last_activity=_expect(raw, "lastActivity", (int, float)),
        )

    def to_dict(self) -> dict:
        return {
            "pseudo": self.pseudo,
            "isHost": self.is_host,
            "ready": self.ready,
            "score": self.score,
            "hasAnswered": self.has_answered,
            "answer": self.answer,
            "answerTime": self.answer_time,
            "isCorrect": self.is_correct,
            "connected": self.connected,
            "lastActivity": self.last_activity,
        }


@dataclass(frozen=True)
class PlayerResult:
    answer: str
    is_correct: bool
    time: float
    round_score: int
    was_first: bool

    @classmethod
    def from_dict(cls, raw: Any) -> "PlayerResult":
        if not isinstance(raw, dict):
            raise SchemaError("round result entry is not an object", field="lastRoundResult")
        return cls(
            answer=_expect(raw, "answer", (str,), ""),
            is_correct=_expect(raw, "isCorrect", (bool,), False),
            time=float(_expect(raw, "time", (int, float), 0)),
            round_score=int(_expect(raw, "roundScore", (int, float), 0)),
            was_first=_expect(raw, "wasFirst", (bool,), False),
        )

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "isCorrect": self.is_correct,
            "time": self.time,
            "roundScore": self.round_score,
            "wasFirst": self.was_first,
        }


@dataclass(frozen=True)
class RoundResult:
    round: int
    correct_answer: str
    players: dict[str, PlayerResult] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> "RoundResult":
        if not isinstance(raw, dict):
            raise SchemaError("lastRoundResult is not an object", field="lastRoundResult")
        players = _expect(raw, "players", (dict,), {})
        return cls(
            round=int(_expect(raw, "round", (int,), 0)),
            correct_answer=_expect(raw, "correctAnswer", (str,), ""),
            players={pid: PlayerResult.from_dict(p) for pid, p in players.items()},
        )

    def to_dict(self) -> dict:
        return {
            "round": self.round,
            "correctAnswer": self.correct_answer,
            "players": {pid: p.to_dict() for pid, p in self.players.items()},
        }


@dataclass(frozen=True)
class Room:
    """Immutable snapshot of a room document."""

    code: str
    seed: int
    status: RoomState = "waiting"
    is_private: bool = False
    difficulty: str = "easy"
    created_at: int | None = None
    current_round: int = 0
    max_rounds: int = 5
    countdown: int | None = None
    players: dict[str, PlayerState] = field(default_factory=dict)
    round_start_time: int | None = None
    last_round_result: RoundResult | None = None
    winner: str | None = None
    end_reason: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "Room":
        if not isinstance(raw, dict):
            raise SchemaError("room is not an object")
        status = _expect(raw, "status", (str,), required=True)
        if status not in ROOM_STATES:
            raise SchemaError(f"unknown status {status!r}", field="status")
        difficulty = _expect(raw, "difficulty", (str,), "easy")
        if difficulty not in DIFFICULTIES:
            raise SchemaError(f"unknown difficulty {difficulty!r}", field="difficulty")
        players_raw = _expect(raw, "players", (dict,), {})
        if len(players_raw) > 2:
            raise SchemaError("room holds more than 2 players", field="players")
        game_config = _expect(raw, "gameConfig", (dict,), {})
        round_start = _expect(game_config, "roundStartTime", (int, float))
        last_result = raw.get("lastRoundResult")
        return cls(
            code=_expect(raw, "code", (str,), required=True),
            seed=int(_expect(raw, "seed", (int,), required=True)),
            status=status,
            is_private=_expect(raw, "isPrivate", (bool,), False),
            difficulty=difficulty,
            created_at=_expect(raw, "createdAt", (int, float)),
            current_round=int(_expect(raw, "currentRound", (int,), 0)),
            max_rounds=int(_expect(raw, "maxRounds", (int,), 5)),
            countdown=_expect(raw, "countdown", (int,)),
            players={pid: PlayerState.from_dict(pid, p) for pid, p in players_raw.items()},
            round_start_time=int(round_start) if round_start is not None else None,
            last_round_result=RoundResult.from_dict(last_result) if last_result is not None else None,
            winner=_expect(raw, "winner", (str,)),
            end_reason=_expect(raw, "endReason", (str,)),
        )

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "seed": self.seed,
            "status": self.status,
            "isPrivate": self.is_private,
            "difficulty": self.difficulty,
            "createdAt": self.created_at,
            "currentRound": self.current_round,
            "maxRounds": self.max_rounds,
            "countdown": self.countdown,
            "players": {pid: p.to_dict() for pid, p in self.players.items()},
            "gameConfig": {"roundStartTime": self.round_start_time},
            "lastRoundResult": self.last_round_result.to_dict() if self.last_round_result else None,
            "winner": self.winner,
            "endReason": self.end_reason,
        }

    def host(self) -> PlayerState | None:
        for p in self.players.values():
            if p.is_host:
                return p
        return None

    def opponent_of(self, peer_id: str) -> PlayerState | None:
        for pid, p in self.players.items():
            if pid != peer_id:
                return p
        return None

    def all_ready(self) -> bool:
        return len(self.players) == 2 and all(p.ready for p in self.players.values())

    def is_last_round(self) -> bool:
        return self.current_round + 1 >= self.max_rounds


def new_player_fields(pseudo: str, is_host: bool) -> dict:
    """Document fields for a player entering a room."""
    return {
        "pseudo": pseudo,
        "isHost": is_host,
        "ready": False,
        "score": 0,
        "hasAnswered": False,
        "answer": None,
        "answerTime": None,
        "isCorrect": None,
        "connected": True,
    }
