from __future__ import annotations

import math
from dataclasses import dataclass

from .models import PlayerState


@dataclass(frozen=True)
class TimerReading:
    remaining: float
    deadline: float
    stressed: bool = False
    # my own timeout is due; only set while I still have to answer
    expired: bool = False

    @property
    def display_seconds(self) -> int:
        return int(math.ceil(self.remaining))


def read_timer(
    elapsed: float,
    me: PlayerState,
    opponent: PlayerState | None,
    round_sec: float = 30,
    stress_sec: float = 10,
) -> TimerReading:
    """Remaining answer time for ``me``, ``elapsed`` seconds into the round."""
    opponent_answered = bool(opponent and opponent.has_answered)
    opponent_connected = bool(opponent and opponent.connected)

    if me.has_answered and opponent_answered:
        return TimerReading(remaining=0, deadline=elapsed)

    if me.has_answered:
        deadline = (me.answer_time or elapsed) + stress_sec
        return TimerReading(remaining=max(0.0, deadline - elapsed), deadline=deadline)

    opponent_time = opponent.answer_time if opponent_answered else None
    if opponent_connected and opponent_time is not None and 0 < opponent_time < round_sec:
        deadline = opponent_time + stress_sec
        remaining = max(0.0, deadline - elapsed)
        return TimerReading(remaining=remaining, deadline=deadline, stressed=True, expired=remaining <= 0)

    remaining = max(0.0, round_sec - elapsed)
    return TimerReading(remaining=remaining, deadline=round_sec, expired=remaining <= 0)
