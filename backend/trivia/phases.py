"""Question phase state machine.

The phase is never stored on its own: it is derived from the session's status,
current question index and the per-question phase marker, so it cannot drift
from the session record. Transitions are host-driven and strictly forward.
"""

from __future__ import annotations

from typing import Dict, NamedTuple, Optional

from .errors import InvalidPhaseTransition
from .models import QuestionPhase, Session, SessionStatus


class Transition(NamedTuple):
    action: str
    target: QuestionPhase


# Forward transitions triggered by the host. Leaving RESULTS lands on either
# QUESTION_SHOWN or FINISHED depending on whether a question remains.
TRANSITIONS: Dict[QuestionPhase, Transition] = {
    QuestionPhase.LOBBY: Transition("start", QuestionPhase.PRE_GAME),
    QuestionPhase.PRE_GAME: Transition("next_question", QuestionPhase.QUESTION_SHOWN),
    QuestionPhase.QUESTION_SHOWN: Transition("show_answers", QuestionPhase.ANSWERS_SHOWN),
    QuestionPhase.ANSWERS_SHOWN: Transition("reveal_answer", QuestionPhase.REVEALED),
    QuestionPhase.REVEALED: Transition("show_results", QuestionPhase.RESULTS),
    QuestionPhase.RESULTS: Transition("next_question", QuestionPhase.QUESTION_SHOWN),
}


def derive_phase(session: Session) -> QuestionPhase:
    if session.status == SessionStatus.LOBBY:
        return QuestionPhase.LOBBY
    if session.status == SessionStatus.FINISHED:
        return QuestionPhase.FINISHED
    if session.current_question_index < 0 or session.question_phase is None:
        return QuestionPhase.PRE_GAME
    return session.question_phase


def question_revealed(session: Session) -> bool:
    """Whether the current question has been revealed.

    Read from ``revealed_through`` rather than the phase, so the answer stays
    revealed after the game finishes.
    """
    return 0 <= session.current_question_index <= session.revealed_through


def next_action(phase: QuestionPhase) -> Optional[str]:
    transition = TRANSITIONS.get(phase)
    return transition.action if transition else None


def plan_transition(
    session: Session,
    expected: QuestionPhase,
    question_count: int,
    now: float,
) -> Dict[str, object]:
    """Return the session ``$set`` payload for the forward step out of ``expected``.

    Raises ``InvalidPhaseTransition`` if the session is not in ``expected`` or
    ``expected`` has no forward step. Starting a lobby session is handled by
    the controller since it has its own preconditions.
    """
    current = derive_phase(session)
    if current != expected:
        raise InvalidPhaseTransition(f"Expected phase {expected.value}, session is in {current.value}")
    if current in (QuestionPhase.LOBBY, QuestionPhase.FINISHED):
        raise InvalidPhaseTransition(f"Cannot advance from {current.value}")

    if current in (QuestionPhase.PRE_GAME, QuestionPhase.RESULTS):
        next_index = session.current_question_index + 1
        if next_index >= question_count:
            return {
                "status": SessionStatus.FINISHED,
                "question_phase": None,
                "answers_shown_at": None,
                "updated_at": now,
            }
        return {
            "current_question_index": next_index,
            "question_phase": QuestionPhase.QUESTION_SHOWN,
            "answers_shown_at": None,
            "updated_at": now,
        }

    target = TRANSITIONS[current].target
    update: Dict[str, object] = {"question_phase": target, "updated_at": now}
    if target == QuestionPhase.ANSWERS_SHOWN:
        update["answers_shown_at"] = now
    if target == QuestionPhase.REVEALED:
        update["revealed_through"] = max(session.revealed_through, session.current_question_index)
    return update
