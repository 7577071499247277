from __future__ import annotations

import math
import unicodedata
from dataclasses import dataclass, replace
from typing import Iterable

from ..store.document import increment
from .models import PlayerResult, PlayerState, Room, RoundResult


BASE_SCORE = 30
FIRST_BONUS = 5


def normalize_answer(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", (text or "").strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def is_correct_answer(text: str, accepted_names: Iterable[str]) -> bool:
    answer = normalize_answer(text)
    if not answer:
        return False
    return answer in {normalize_answer(n) for n in accepted_names}


def round_score(
    is_correct: bool,
    answer_time: float | None,
    is_first: bool,
    base: int = BASE_SCORE,
    bonus: int = FIRST_BONUS,
) -> int:
    if not is_correct:
        return 0
    elapsed = math.floor(answer_time or 0)
    return max(0, base - elapsed + (bonus if is_first else 0))


def first_correct(players: Iterable[PlayerState]) -> str | None:
    """Id of the strictly fastest correct player; ``None`` on a tie or no correct answer."""
    correct = [p for p in players if p.is_correct and p.answer_time is not None]
    if not correct:
        return None
    correct.sort(key=lambda p: p.answer_time)
    if len(correct) > 1 and correct[0].answer_time == correct[1].answer_time:
        return None
    return correct[0].id


@dataclass(frozen=True)
class Resolution:
    result: RoundResult
    updates: dict


def resolve_round(
    room: Room,
    correct_answer: str,
    base: int = BASE_SCORE,
    bonus: int = FIRST_BONUS,
) -> Resolution:
    """Score the current round of ``room``.

    Players who never answered (a disconnected opponent) are settled as an
    empty, incorrect answer. The returned ``updates`` is one multi-path write:
    forced answers, score increments, the ``round_end`` status and the
    ``lastRoundResult`` snapshot.
    """
    settled = []
    updates: dict = {}
    for pid, p in room.players.items():
        if not p.has_answered:
            p = replace(p, has_answered=True, answer="", is_correct=False)
            updates[f"players/{pid}/hasAnswered"] = True
            updates[f"players/{pid}/answer"] = ""
            updates[f"players/{pid}/isCorrect"] = False
        settled.append(p)

    first_id = first_correct(settled)
    results = {}
    for p in settled:
        is_first = p.id == first_id
        score = round_score(bool(p.is_correct), p.answer_time, is_first, base=base, bonus=bonus)
        results[p.id] = PlayerResult(
            answer=p.answer or "",
            is_correct=bool(p.is_correct),
            time=p.answer_time or 0,
            round_score=score,
            was_first=is_first,
        )
        if score:
            updates[f"players/{p.id}/score"] = increment(score)

    result = RoundResult(round=room.current_round, correct_answer=correct_answer, players=results)
    updates["status"] = "round_end"
    updates["lastRoundResult"] = result.to_dict()
    return Resolution(result=result, updates=updates)
