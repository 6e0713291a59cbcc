"""Read-side views derived purely from stored records.

Nothing here touches the store: the controller loads the records and hands
them in, so any viewer that subscribes late recomputes the same view from the
same data.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from .models import Answer, Player, Question, QuestionPhase, Session
from .phases import derive_phase, question_revealed
from .shuffle import shuffle_order


class QuestionView(BaseModel):
    id: str
    index: int
    text: str
    options: List[str]
    time_limit: int


class CurrentQuestion(QuestionView):
    phase: QuestionPhase
    total_questions: int
    shuffle_order: List[int]
    correct_index: Optional[int] = None


class Timing(BaseModel):
    answers_shown_at: Optional[float] = None
    first_answered_at: Optional[float] = None
    time_limit: int
    is_expired: bool = False
    is_revealed: bool = False


class RopeCount(BaseModel):
    option_index: int
    option_text: str
    player_count: int
    is_correct: Optional[bool] = None


class MyAnswer(BaseModel):
    has_answered: bool = False
    selected_option: Optional[int] = None
    is_correct: Optional[bool] = None
    position: Optional[int] = None
    elevation_gain: Optional[int] = None


class PlayerRopeState(BaseModel):
    phase: QuestionPhase
    question: QuestionView
    ropes: List[RopeCount]
    my_answer: MyAnswer
    timing: Timing
    answered_count: int
    total_players: int


class PlayerOnRope(BaseModel):
    player_id: str
    player_name: str
    elevation_at_answer: int
    answered_at: float
    elevation_gain: Optional[int] = None


class RopeData(BaseModel):
    option_index: int
    option_text: str
    players: List[PlayerOnRope]
    is_correct: Optional[bool] = None


class WaitingPlayer(BaseModel):
    player_id: str
    player_name: str
    elevation: int
    last_option_index: Optional[int] = None


class RopeClimbingState(BaseModel):
    phase: QuestionPhase
    question: QuestionView
    ropes: List[RopeData]
    not_answered: List[WaitingPlayer]
    timing: Timing
    total_players: int
    active_player_count: int
    answered_count: int


class LeaderboardEntry(BaseModel):
    rank: int
    player_id: str
    name: str
    elevation: int
    reached_summit: bool = False
    summit_place: Optional[int] = None


class LeaderboardSummary(BaseModel):
    entries: List[LeaderboardEntry]
    total_players: int
    requesting_player: Optional[LeaderboardEntry] = None


class PlayerContext(BaseModel):
    player: Player
    nearby: List[Player]
    elevation_range: int
    total_players: int


class QuestionResults(BaseModel):
    question_id: str
    question_index: int
    option_counts: List[int]
    total_answers: int
    correct_index: Optional[int] = None


def _question_view(question: Question, index: int) -> QuestionView:
    return QuestionView(
        id=question.id,
        index=index,
        text=question.text,
        options=list(question.options),
        time_limit=question.time_limit,
    )


def in_submission_order(answers: Sequence[Answer]) -> List[Answer]:
    # sorted() is stable, so equal timestamps keep insertion order.
    return sorted(answers, key=lambda a: a.answered_at)


def _timing(session: Session, question: Question, answers: Sequence[Answer], now: float) -> Timing:
    phase = derive_phase(session)
    first_answered_at = None
    if phase != QuestionPhase.QUESTION_SHOWN and answers:
        first_answered_at = min(a.answered_at for a in answers)

    is_expired = (
        session.answers_shown_at is not None
        and now - session.answers_shown_at >= question.time_limit
    )
    return Timing(
        answers_shown_at=session.answers_shown_at,
        first_answered_at=first_answered_at,
        time_limit=question.time_limit,
        is_expired=is_expired,
        is_revealed=question_revealed(session),
    )


def current_question(
    session: Session, question: Optional[Question], total_questions: int
) -> Optional[CurrentQuestion]:
    if question is None or session.current_question_index < 0:
        return None
    phase = derive_phase(session)
    return CurrentQuestion(
        **_question_view(question, session.current_question_index).model_dump(),
        phase=phase,
        total_questions=total_questions,
        shuffle_order=shuffle_order(len(question.options), session.code, session.current_question_index),
        correct_index=question.correct_index if question_revealed(session) else None,
    )


def player_rope_state(
    session: Session,
    question: Optional[Question],
    answers: Sequence[Answer],
    player_id: str,
    total_players: int,
    now: float,
) -> Optional[PlayerRopeState]:
    if question is None or session.current_question_index < 0:
        return None

    phase = derive_phase(session)
    revealed = question_revealed(session)

    counts = [0] * len(question.options)
    for answer in answers:
        if 0 <= answer.option_index < len(counts):
            counts[answer.option_index] += 1

    ordered = in_submission_order(answers)
    my_answer = MyAnswer()
    for position, answer in enumerate(ordered, start=1):
        if answer.player_id != player_id:
            continue
        my_answer = MyAnswer(
            has_answered=True,
            selected_option=answer.option_index,
            is_correct=answer.is_correct if revealed else None,
            position=position,
            elevation_gain=answer.elevation_delta if revealed else None,
        )
        break

    ropes = [
        RopeCount(
            option_index=index,
            option_text=text,
            player_count=counts[index],
            is_correct=(index == question.correct_index) if revealed else None,
        )
        for index, text in enumerate(question.options)
    ]

    return PlayerRopeState(
        phase=phase,
        question=_question_view(question, session.current_question_index),
        ropes=ropes,
        my_answer=my_answer,
        timing=_timing(session, question, answers, now),
        answered_count=len(answers),
        total_players=total_players,
    )


def rope_climbing_state(
    session: Session,
    question: Optional[Question],
    players: Sequence[Player],
    answers: Sequence[Answer],
    now: float,
    presence_timeout: float,
) -> Optional[RopeClimbingState]:
    if question is None or session.current_question_index < 0:
        return None

    phase = derive_phase(session)
    revealed = question_revealed(session)
    names = {p.id: p.name for p in players}
    answered_ids = {a.player_id for a in answers}

    ropes: List[RopeData] = []
    if phase != QuestionPhase.QUESTION_SHOWN:
        by_option: Dict[int, List[PlayerOnRope]] = {i: [] for i in range(len(question.options))}
        for answer in in_submission_order(answers):
            if answer.option_index not in by_option:
                continue
            by_option[answer.option_index].append(
                PlayerOnRope(
                    player_id=answer.player_id,
                    player_name=names.get(answer.player_id, ""),
                    elevation_at_answer=answer.elevation_at_answer,
                    answered_at=answer.answered_at,
                    elevation_gain=answer.elevation_delta if revealed else None,
                )
            )
        ropes = [
            RopeData(
                option_index=index,
                option_text=text,
                players=by_option[index],
                is_correct=(index == question.correct_index) if revealed else None,
            )
            for index, text in enumerate(question.options)
        ]

    not_answered = [
        WaitingPlayer(
            player_id=p.id,
            player_name=p.name,
            elevation=p.elevation,
            last_option_index=p.last_option_index,
        )
        for p in players
        if p.id not in answered_ids
    ]

    active = sum(1 for p in players if is_active(p, now, presence_timeout))

    return RopeClimbingState(
        phase=phase,
        question=_question_view(question, session.current_question_index),
        ropes=ropes,
        not_answered=not_answered,
        timing=_timing(session, question, answers, now),
        total_players=len(players),
        active_player_count=active,
        answered_count=len(answers),
    )


def is_active(player: Player, now: float, presence_timeout: float) -> bool:
    if not player.last_seen_at:
        return False
    return now - player.last_seen_at < presence_timeout


def rank_players(players: Sequence[Player]) -> List[Player]:
    return sorted(players, key=lambda p: (-p.elevation, p.joined_at, p.id))


def leaderboard_summary(
    players: Sequence[Player],
    limit: int,
    requesting_player_id: Optional[str] = None,
    summit_elevation: int = 1000,
) -> LeaderboardSummary:
    ranked = [
        LeaderboardEntry(
            rank=rank,
            player_id=p.id,
            name=p.name,
            elevation=p.elevation,
            reached_summit=p.elevation >= summit_elevation,
            summit_place=p.summit_place,
        )
        for rank, p in enumerate(rank_players(players), start=1)
    ]
    entries = ranked[: max(limit, 0)]

    me = next((e for e in ranked if e.player_id == requesting_player_id), None)
    if me is not None and me not in entries:
        entries = [*entries, me]

    return LeaderboardSummary(entries=entries, total_players=len(ranked), requesting_player=me)


def player_context(
    players: Sequence[Player], player_id: str, elevation_range: int
) -> Optional[PlayerContext]:
    me = next((p for p in players if p.id == player_id), None)
    if me is None:
        return None
    nearby = [p for p in players if abs(p.elevation - me.elevation) <= elevation_range]
    return PlayerContext(
        player=me,
        nearby=nearby,
        elevation_range=elevation_range,
        total_players=len(players),
    )


def question_results(session: Session, question: Optional[Question], answers: Sequence[Answer]) -> Optional[QuestionResults]:
    if question is None or session.current_question_index < 0:
        return None
    counts = [0] * len(question.options)
    for answer in answers:
        if 0 <= answer.option_index < len(counts):
            counts[answer.option_index] += 1
    return QuestionResults(
        question_id=question.id,
        question_index=session.current_question_index,
        option_counts=counts,
        total_answers=len(answers),
        correct_index=question.correct_index if question_revealed(session) else None,
    )
