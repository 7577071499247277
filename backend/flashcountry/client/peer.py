"""One player's PvP client.

A :class:`PvPPeer` reacts to three event sources: room snapshots from the
store subscription, local scheduler ticks, and the player's own actions. It
keeps its own observed state (see :mod:`flashcountry.game.machine`) and, when
:func:`resolve_authority` names it, performs the authority writes.
"""
from __future__ import annotations

import functools
import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable

from ..config import Config
from ..game import machine
from ..game.authority import is_authority
from ..game.errors import PvPError, SchemaError, StaleTransition
from ..game.models import LocalState, PlayerState, Room, RoundResult
from ..game.presence import needs_grace
from ..game.rounds import CountryCatalog, GameConfig, current_image_index, generate_rounds
from ..game.scoring import is_correct_answer
from ..game.service import RoomService, round_resolvable
from ..game.timer import TimerReading, read_timer
from .flight import SingleFlight
from .scheduler import Handle, Scheduler, TimerGroup


log = logging.getLogger(__name__)


def _serialized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


@dataclass(frozen=True)
class RoundEndView:
    round_number: int
    result: RoundResult | None
    me: PlayerState | None
    opponent: PlayerState | None


@dataclass(frozen=True)
class MatchOutcome:
    winner: str | None
    reason: str | None
    my_score: int
    opponent_score: int
    opponent_pseudo: str


class PvPPeer:
    def __init__(
        self,
        service: RoomService,
        peer_id: str,
        display_name: str,
        catalog: CountryCatalog,
        scheduler: Scheduler,
        config=Config,
        listener: Callable[["PvPPeer"], None] | None = None,
    ) -> None:
        self.service = service
        self.peer_id = peer_id
        self.display_name = display_name
        self.catalog = catalog
        self.scheduler = scheduler
        self.config = config
        self.listener = listener

        self.state: LocalState = "menu"
        self.room_code: str | None = None
        self.room: Room | None = None
        self.game: GameConfig | None = None
        self.error: str | None = None

        self.countdown: int | None = None
        self.has_answered = False
        self.last_answer_correct: bool | None = None
        self.timer: TimerReading | None = None
        self.stressed = False
        self.round_end: RoundEndView | None = None
        self.outcome: MatchOutcome | None = None
        self.grace_deadline_ms: int | None = None

        self._timers = TimerGroup(self.scheduler)
        self._grace: Handle | None = None
        self._heartbeat: Handle | None = None
        self._flight = SingleFlight()
        self._unsubscribe: Callable[[], None] | None = None
        # snapshots, timer ticks and actions arrive on different threads
        self._lock = threading.RLock()

    # --- actions -----------------------------------------------------------

    @_serialized
    def create_room(self, is_private: bool = True, difficulty: str = "easy") -> str:
        code = self.service.create_room(self.peer_id, self.display_name, is_private=is_private, difficulty=difficulty)
        self._enter_room(code)
        return code

    @_serialized
    def join_room(self, code: str) -> str:
        code = self.service.join_room(code, self.peer_id, self.display_name)
        self._enter_room(code)
        return code

    @_serialized
    def quick_match(self) -> str:
        code = self.service.find_or_create_match(self.peer_id, self.display_name)
        self._enter_room(code)
        return code

    @_serialized
    def mark_ready(self) -> None:
        room = self.room
        if room is None or self.state not in ("waiting", "round_end"):
            return
        if self.state == "round_end" and room.is_last_round():
            # nothing left to coordinate after the final round
            self._stop_timers()
            self.state = "game_end"
            self._capture_outcome(room)
            self._notify()
            return
        self._ensure_game(room)
        self.service.mark_ready(self.room_code, self.peer_id)

    @_serialized
    def submit_answer(self, text: str) -> bool:
        room = self.room
        if self.state != "playing" or room is None or self.has_answered:
            return False
        if not (text or "").strip() or room.round_start_time is None:
            return False
        game = self._ensure_game(room)
        country = self.catalog.get(game.rounds[room.current_round].country_name)
        correct = is_correct_answer(text, country.names)
        return self._submit(text, correct)

    @_serialized
    def leave_room(self) -> None:
        code = self.room_code
        self._teardown()
        try:
            if code:
                self.service.leave_room(code, self.peer_id)
        finally:
            self.room_code = None
            self.room = None
            self.state = "menu"
            self._notify()

    @_serialized
    def resume(self) -> None:
        """Reconnect the store session and re-arm presence."""
        self.service.repo.session.reconnect()
        if self.room_code:
            self.service.mark_present(self.room_code, self.peer_id)

    # --- views -------------------------------------------------------------

    @property
    def opponent(self) -> PlayerState | None:
        return self.room.opponent_of(self.peer_id) if self.room else None

    @property
    def grace_remaining(self) -> float | None:
        if self.grace_deadline_ms is None:
            return None
        return max(0.0, (self.grace_deadline_ms - self.service.now_ms()) / 1000)

    def current_image(self) -> str | None:
        room = self.room
        if self.state != "playing" or room is None or room.round_start_time is None or self.game is None:
            return None
        images = self.game.rounds[room.current_round].images
        if not images:
            return None
        index = current_image_index(
            room.round_start_time, self.service.now_ms(), len(images), self.config.IMAGE_INTERVAL_MS
        )
        return images[index]

    # --- snapshot handling -------------------------------------------------

    def _enter_room(self, code: str) -> None:
        self.service.mark_present(code, self.peer_id)
        self.room_code = code
        self.error = None
        self.state = "waiting"
        self._heartbeat = self.scheduler.call_every(self.config.HEARTBEAT_INTERVAL_SEC, self._send_heartbeat)
        self._unsubscribe = self.service.repo.watch(code, self._on_snapshot, on_invalid=self._on_invalid_snapshot)

    @_serialized
    def _on_snapshot(self, room: Room | None) -> None:
        if room is None:
            if self.state != "game_end":
                log.warning("room %s vanished while %s", self.room_code, self.state)
                self.error = "room_not_found"
                self.state = "menu"
                self.room_code = None
            self._teardown()
            self._notify()
            return

        if self.error == SchemaError.code:
            self.error = None
        if self.peer_id not in room.players:
            return

        self._act_as_authority(room)

        try:
            transition = machine.apply_snapshot(self.state, room)
        except StaleTransition as exc:
            log.debug("room %s: ignoring stale update %s", room.code, exc)
            return

        self.room = room
        if transition.changed:
            log.info("room %s: %s %s -> %s", room.code, self.peer_id, self.state, transition.state)
            self._flight.reset()
            self.state = transition.state
            for effect in transition.effects:
                self._apply_effect(effect, room)

        self._track_presence(room)
        if self.state == "playing":
            self._round_tick()
        self._notify()

    @_serialized
    def _on_invalid_snapshot(self, exc: SchemaError) -> None:
        log.error("room %s: unreadable snapshot for %s: %s", self.room_code, self.peer_id, exc)
        self.error = exc.code
        self._notify()

    def _apply_effect(self, effect: str, room: Room) -> None:
        if effect == machine.STOP_TIMERS:
            self._stop_timers()
        elif effect == machine.RESET_ROUND:
            self.has_answered = False
            self.last_answer_correct = None
            self.stressed = False
            self.timer = None
        elif effect == machine.START_COUNTDOWN:
            self._ensure_game(room)
            self.countdown = room.countdown if room.countdown is not None else self.config.COUNTDOWN_SEC
            self._timers.every("countdown", 1, self._countdown_tick)
        elif effect == machine.START_ROUND_TIMER:
            self._ensure_game(room)
            self._timers.every("round", self.config.TIMER_TICK_SEC, self._round_tick)
        elif effect == machine.CAPTURE_ROUND_END:
            self.round_end = RoundEndView(
                round_number=room.current_round + 1,
                result=room.last_round_result,
                me=room.players.get(self.peer_id),
                opponent=room.opponent_of(self.peer_id),
            )
        elif effect == machine.CAPTURE_GAME_END:
            self._capture_outcome(room)

    def _act_as_authority(self, room: Room) -> None:
        if room.status != self.state or not is_authority(room, self.peer_id):
            return
        if room.status == "waiting" and room.all_ready():
            self._once(("countdown", room.current_round), lambda: self.service.start_countdown(room.code))
        elif room.status == "round_end" and room.all_ready() and not room.is_last_round():
            self._once(("advance", room.current_round), lambda: self.service.advance_round(room.code))
        elif room.status == "playing" and round_resolvable(room):
            correct = self._ensure_game(room).rounds[room.current_round].country_name
            self._once(
                ("resolve", room.current_round),
                lambda: self.service.finish_round(room.code, room.current_round, correct),
            )

    def _once(self, key: tuple, action: Callable[[], object]) -> None:
        if not self._flight.acquire(key):
            return
        try:
            done = action()
        except PvPError:
            self._flight.release(key)
            raise
        if not done:
            self._flight.release(key)

    # --- timers ------------------------------------------------------------

    @_serialized
    def _countdown_tick(self) -> None:
        room = self.room
        if self.state != "countdown" or room is None or self.countdown is None:
            return
        self.countdown = max(0, self.countdown - 1)
        authority = is_authority(room, self.peer_id)
        if self.countdown > 0:
            if authority:
                self.service.set_countdown(room.code, self.countdown)
            self._notify()
            return
        self._timers.cancel("countdown")
        if authority:
            self._once(("start", room.current_round), lambda: self.service.start_round(room.code, room.current_round))
        self._notify()

    @_serialized
    def _round_tick(self) -> None:
        room = self.room
        if self.state != "playing" or room is None or room.round_start_time is None:
            return
        me = room.players.get(self.peer_id)
        if me is None:
            return
        if self.has_answered and not me.has_answered:
            me = replace(me, has_answered=True)
        elapsed = (self.service.now_ms() - room.round_start_time) / 1000
        reading = read_timer(
            elapsed,
            me,
            room.opponent_of(self.peer_id),
            round_sec=self.config.ROUND_DURATION_SEC,
            stress_sec=self.config.STRESS_WINDOW_SEC,
        )
        if reading.stressed and not self.stressed:
            log.info("room %s: %s under stress, deadline %.1fs", room.code, self.peer_id, reading.deadline)
        self.timer = reading
        self.stressed = reading.stressed
        if reading.expired and not self.has_answered:
            log.info("room %s: %s timed out at %.1fs", room.code, self.peer_id, elapsed)
            self._submit("", False)

    def _submit(self, text: str, correct: bool) -> bool:
        room = self.room
        self.has_answered = True
        self.last_answer_correct = correct
        self.stressed = False
        self._timers.cancel("round")
        elapsed = (self.service.now_ms() - room.round_start_time) / 1000
        try:
            self.service.submit_answer(room.code, self.peer_id, text, elapsed, correct, room.round_start_time)
        except PvPError:
            self.has_answered = False
            self.last_answer_correct = None
            if self.state == "playing":
                self._timers.every("round", self.config.TIMER_TICK_SEC, self._round_tick)
            raise
        return True

    def _track_presence(self, room: Room) -> None:
        if needs_grace(self.state, room, self.peer_id):
            if self._grace is None:
                grace = self.config.DISCONNECT_GRACE_SEC
                log.info("room %s: opponent of %s disconnected, %ss grace", room.code, self.peer_id, grace)
                self.grace_deadline_ms = self.service.now_ms() + grace * 1000
                self._grace = self.scheduler.call_later(grace, self._grace_expired)
        elif self._grace is not None:
            log.info("room %s: opponent of %s is back", room.code, self.peer_id)
            self._cancel_grace()

    @_serialized
    def _grace_expired(self) -> None:
        self._grace = None
        self.grace_deadline_ms = None
        room = self.room
        if room is None or not needs_grace(self.state, room, self.peer_id):
            return
        self.service.declare_forfeit(room.code, self.peer_id)

    def _cancel_grace(self) -> None:
        if self._grace is not None:
            self._grace.cancel()
        self._grace = None
        self.grace_deadline_ms = None

    @_serialized
    def _send_heartbeat(self) -> None:
        if not self.room_code:
            return
        try:
            self.service.heartbeat(self.room_code, self.peer_id)
        except PvPError as exc:
            log.warning("heartbeat for %s failed: %s", self.peer_id, exc.code)

    def _stop_timers(self) -> None:
        self._timers.cancel_all()
        self._cancel_grace()

    def _teardown(self) -> None:
        self._stop_timers()
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # --- helpers -----------------------------------------------------------

    def _ensure_game(self, room: Room) -> GameConfig:
        if self.game is None or self.game.seed != room.seed:
            self.game = generate_rounds(
                room.seed, room.difficulty, self.catalog, images_per_round=self.config.IMAGES_PER_ROUND
            )
        return self.game

    def _capture_outcome(self, room: Room) -> None:
        me = room.players.get(self.peer_id)
        opponent = room.opponent_of(self.peer_id)
        my_score = me.score if me else 0
        opponent_score = opponent.score if opponent else 0
        winner = room.winner
        if winner is None and my_score != opponent_score:
            winner = self.peer_id if my_score > opponent_score else (opponent.id if opponent else None)
        self.outcome = MatchOutcome(
            winner=winner,
            reason=room.end_reason,
            my_score=my_score,
            opponent_score=opponent_score,
            opponent_pseudo=opponent.pseudo if opponent else "",
        )

    def _notify(self) -> None:
        if self.listener is not None:
            self.listener(self)
