"""Per-peer round state machine.

The shared document can redeliver or reorder ``status`` values; each peer keeps
its own observed state and only moves forward through ``STATE_ORDER``, with
the single back-edge ``round_end -> countdown`` used to start the next round.
"""
from __future__ import annotations

from dataclasses import dataclass

from .errors import StaleTransition
from .models import STATE_ORDER, Room


IN_MATCH = ("countdown", "playing", "round_end")

# effects
STOP_TIMERS = "stop_timers"
RESET_ROUND = "reset_round"
START_COUNTDOWN = "start_countdown"
START_ROUND_TIMER = "start_round_timer"
CAPTURE_ROUND_END = "capture_round_end"
CAPTURE_GAME_END = "capture_game_end"


def check_transition(current: str, incoming: str) -> None:
    """Raise :class:`StaleTransition` unless ``current -> incoming`` is allowed."""
    if current == "round_end" and incoming == "countdown":
        return
    if current in IN_MATCH and incoming == "waiting":
        raise StaleTransition(current, incoming)
    if current == "countdown" and incoming == "round_end":
        raise StaleTransition(current, incoming)
    if current == incoming:
        return
    if STATE_ORDER.index(incoming) <= STATE_ORDER.index(current):
        raise StaleTransition(current, incoming)


@dataclass(frozen=True)
class Transition:
    state: str
    changed: bool
    effects: tuple[str, ...] = ()


_ENTER_EFFECTS = {
    "waiting": (),
    "countdown": (STOP_TIMERS, RESET_ROUND, START_COUNTDOWN),
    "playing": (STOP_TIMERS, RESET_ROUND, START_ROUND_TIMER),
    "round_end": (STOP_TIMERS, CAPTURE_ROUND_END, RESET_ROUND),
    "game_end": (STOP_TIMERS, CAPTURE_GAME_END),
}


def apply_snapshot(local: str, room: Room) -> Transition:
    check_transition(local, room.status)
    if room.status == local:
        return Transition(state=local, changed=False)
    return Transition(state=room.status, changed=True, effects=_ENTER_EFFECTS[room.status])
