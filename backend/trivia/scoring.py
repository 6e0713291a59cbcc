"""Elevation scoring.

A player's elevation is a fold over their answers to revealed questions, so
replaying the answer ledger always reproduces the same standings.

The ``flat`` and ``speed`` curves price an answer when it is submitted. The
``original`` curve needs the whole answer distribution (minority bonus) and the
standings before the reveal (catch-up cap), so it prices every answer of a
question once, at reveal, and writes the result back onto the answers.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Literal, Mapping, NamedTuple, Optional, Sequence

from pydantic import BaseModel

from .db import Settings
from .models import Answer

MAX_BASE_SCORE = 125
MAX_MINORITY_BONUS = 50
# Share of the questions a perfect player needs to reach the summit.
TARGET_SUMMIT_SHARE = 0.55
# The catch-up cap only ever raises the per-question ceiling above this.
CAP_FLOOR = MAX_BASE_SCORE + MAX_MINORITY_BONUS
BASE_WINDOW_SECONDS = 10.0


class ScoringConfig(BaseModel):
    curve: Literal["flat", "speed", "original"] = "speed"
    correct_elevation: int = 100
    min_correct_elevation: int = 50
    speed_window_seconds: float = 10.0
    summit_elevation: int = 1000
    scale_to_question_count: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringConfig":
        return cls(
            curve=settings.ELEVATION_CURVE,
            correct_elevation=settings.CORRECT_ELEVATION,
            min_correct_elevation=settings.MIN_CORRECT_ELEVATION,
            speed_window_seconds=settings.SPEED_WINDOW_SECONDS,
            summit_elevation=settings.SUMMIT_ELEVATION,
            scale_to_question_count=settings.SCALE_ELEVATION_TO_QUESTIONS,
        )

    @property
    def priced_at_reveal(self) -> bool:
        return self.curve == "original"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def elevation_delta(is_correct: bool, answer_seconds: float, config: ScoringConfig) -> int:
    """Elevation earned by one answer at submission; never negative.

    Curves priced at reveal return 0 here and are settled by ``score_reveal``.
    """
    if not is_correct or config.priced_at_reveal:
        return 0
    if config.curve == "flat" or config.speed_window_seconds <= 0:
        return max(0, config.correct_elevation)

    elapsed = min(max(answer_seconds, 0.0), config.speed_window_seconds)
    span = config.correct_elevation - config.min_correct_elevation
    reward = config.correct_elevation - span * (elapsed / config.speed_window_seconds)
    return max(0, round(reward))


def max_per_question(total_questions: int, summit: int = 1000) -> float:
    """Gain per perfect answer that reaches the summit after 55% of the questions."""
    if total_questions <= 0:
        return float(CAP_FLOOR)
    return summit / (total_questions * TARGET_SUMMIT_SHARE)


def base_score(answer_seconds: float, total_questions: Optional[int] = None, summit: int = 1000) -> int:
    """Speed part of the gain: full marks at 0s, nothing from 10s on."""
    seconds = max(0.0, answer_seconds)
    if total_questions:
        top = max_per_question(total_questions, summit) * (MAX_BASE_SCORE / CAP_FLOOR)
    else:
        top = MAX_BASE_SCORE
    return round_half_up(max(0.0, top - seconds * (top / BASE_WINDOW_SECONDS)))


def minority_bonus(
    on_option: int, total_answered: int, total_questions: Optional[int] = None, summit: int = 1000
) -> int:
    """Bonus for picking a less crowded option, scaled by ``1 - on_option / total_answered``."""
    if total_answered <= 0:
        return 0
    if total_questions:
        top = max_per_question(total_questions, summit) * (MAX_MINORITY_BONUS / CAP_FLOOR)
    else:
        top = MAX_MINORITY_BONUS
    return round_half_up((1 - on_option / total_answered) * top)


def dynamic_cap(leader_elevation: int, questions_remaining: int, summit: int = 1000) -> int:
    """Per-question ceiling for players below the summit.

    ``leader_elevation`` is the highest elevation among players still below
    the summit. When the leader would need more than the floor per question to
    get there in the remaining questions, the ceiling is raised to match.
    """
    distance = summit - leader_elevation
    if questions_remaining <= 0 or distance <= 0:
        return CAP_FLOOR
    boost = distance / (questions_remaining * TARGET_SUMMIT_SHARE)
    return max(CAP_FLOOR, round_half_up(boost))


class RevealScore(NamedTuple):
    is_correct: bool
    base_score: int
    minority_bonus: int
    elevation_delta: int


def score_reveal(
    answers: Sequence[Answer],
    correct_index: int,
    elevations: Mapping[str, int],
    questions_remaining: int,
    total_questions: int,
    config: ScoringConfig,
) -> Dict[str, RevealScore]:
    """Price every answer to one question, keyed by answer id.

    Answer time is measured from the first answer to the question. Players
    already at the summit are not capped.
    """
    summit = config.summit_elevation
    counts: Dict[int, int] = {}
    for answer in answers:
        counts[answer.option_index] = counts.get(answer.option_index, 0) + 1
    first_answered_at = min((a.answered_at for a in answers), default=0.0)

    climbing = [e for e in elevations.values() if e < summit]
    cap = dynamic_cap(max(climbing, default=0), questions_remaining, summit)
    scaled_by = total_questions if config.scale_to_question_count else None

    scores: Dict[str, RevealScore] = {}
    for answer in answers:
        if answer.option_index != correct_index:
            scores[answer.id] = RevealScore(False, 0, 0, 0)
            continue
        base = base_score(answer.answered_at - first_answered_at, scaled_by, summit)
        bonus = minority_bonus(counts[answer.option_index], len(answers), scaled_by, summit)
        gain = base + bonus
        if elevations.get(answer.player_id, answer.elevation_at_answer) < summit:
            gain = min(gain, cap)
        scores[answer.id] = RevealScore(True, base, bonus, gain)
    return scores


def fold_elevations(answers: Iterable[Answer], revealed_through: int) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for answer in answers:
        if answer.question_index > revealed_through:
            continue
        totals[answer.player_id] = totals.get(answer.player_id, 0) + answer.elevation_delta
    return totals


def summit_places(
    before: Mapping[str, int],
    after: Mapping[str, int],
    taken_places: Iterable[int],
    summit: int = 1000,
) -> Dict[str, int]:
    """Places for players who crossed the summit between ``before`` and ``after``.

    Places continue after the highest place already handed out. Crossers in
    the same reveal are ranked by elevation, and equal elevations share a place.
    """
    crossed: List[tuple] = [
        (after[pid], pid)
        for pid in after
        if before.get(pid, 0) < summit <= after[pid]
    ]
    crossed.sort(key=lambda item: (-item[0], item[1]))

    place = max(taken_places, default=0)
    last: Optional[int] = None
    places: Dict[str, int] = {}
    for elevation, pid in crossed:
        if elevation != last:
            place += 1
            last = elevation
        places[pid] = place
    return places
