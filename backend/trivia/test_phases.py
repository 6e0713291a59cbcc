from __future__ import annotations

from unittest import TestCase

from .errors import InvalidPhaseTransition
from .models import QuestionPhase, Session, SessionStatus
from .phases import derive_phase, next_action, plan_transition, question_revealed


def make_session(**fields) -> Session:
    return Session(code="ABCD", host_id="host", **fields)


class DerivePhaseTests(TestCase):
    def test_status_decides_lobby_and_finished(self):
        self.assertEqual(derive_phase(make_session()), QuestionPhase.LOBBY)
        self.assertEqual(
            derive_phase(make_session(status=SessionStatus.FINISHED, question_phase=QuestionPhase.RESULTS)),
            QuestionPhase.FINISHED,
        )

    def test_active_without_question_is_pre_game(self):
        s = make_session(status=SessionStatus.ACTIVE, question_phase=QuestionPhase.RESULTS)
        self.assertEqual(derive_phase(s), QuestionPhase.PRE_GAME)

    def test_active_with_question_uses_marker(self):
        s = make_session(
            status=SessionStatus.ACTIVE, current_question_index=2, question_phase=QuestionPhase.ANSWERS_SHOWN
        )
        self.assertEqual(derive_phase(s), QuestionPhase.ANSWERS_SHOWN)

    def test_helpers(self):
        self.assertEqual(next_action(QuestionPhase.LOBBY), "start")
        self.assertEqual(next_action(QuestionPhase.QUESTION_SHOWN), "show_answers")
        self.assertIsNone(next_action(QuestionPhase.FINISHED))


class PlanTransitionTests(TestCase):
    def test_pre_game_moves_to_first_question(self):
        s = make_session(status=SessionStatus.ACTIVE)

        update = plan_transition(s, QuestionPhase.PRE_GAME, 3, now=10.0)

        self.assertEqual(update["current_question_index"], 0)
        self.assertEqual(update["question_phase"], QuestionPhase.QUESTION_SHOWN)
        self.assertIsNone(update["answers_shown_at"])

    def test_show_answers_stamps_time(self):
        s = make_session(
            status=SessionStatus.ACTIVE, current_question_index=0, question_phase=QuestionPhase.QUESTION_SHOWN
        )

        update = plan_transition(s, QuestionPhase.QUESTION_SHOWN, 3, now=42.5)

        self.assertEqual(update["question_phase"], QuestionPhase.ANSWERS_SHOWN)
        self.assertEqual(update["answers_shown_at"], 42.5)

    def test_reveal_advances_revealed_through(self):
        s = make_session(
            status=SessionStatus.ACTIVE,
            current_question_index=1,
            question_phase=QuestionPhase.ANSWERS_SHOWN,
            revealed_through=0,
        )

        update = plan_transition(s, QuestionPhase.ANSWERS_SHOWN, 3, now=1.0)

        self.assertEqual(update["question_phase"], QuestionPhase.REVEALED)
        self.assertEqual(update["revealed_through"], 1)

    def test_results_after_last_question_finishes(self):
        s = make_session(
            status=SessionStatus.ACTIVE, current_question_index=2, question_phase=QuestionPhase.RESULTS
        )

        update = plan_transition(s, QuestionPhase.RESULTS, 3, now=1.0)

        self.assertEqual(update["status"], SessionStatus.FINISHED)
        self.assertNotIn("current_question_index", update)

    def test_results_with_questions_left_moves_on(self):
        s = make_session(
            status=SessionStatus.ACTIVE, current_question_index=0, question_phase=QuestionPhase.RESULTS
        )

        update = plan_transition(s, QuestionPhase.RESULTS, 3, now=1.0)

        self.assertEqual(update["current_question_index"], 1)

    def test_mismatched_expected_phase_is_rejected(self):
        s = make_session(
            status=SessionStatus.ACTIVE, current_question_index=0, question_phase=QuestionPhase.QUESTION_SHOWN
        )

        with self.assertRaises(InvalidPhaseTransition):
            plan_transition(s, QuestionPhase.ANSWERS_SHOWN, 3, now=1.0)

    def test_lobby_and_finished_have_no_planned_step(self):
        with self.assertRaises(InvalidPhaseTransition):
            plan_transition(make_session(), QuestionPhase.LOBBY, 3, now=1.0)
        with self.assertRaises(InvalidPhaseTransition):
            plan_transition(make_session(status=SessionStatus.FINISHED), QuestionPhase.FINISHED, 3, now=1.0)


class QuestionRevealedTests(TestCase):
    def test_follows_revealed_through(self):
        shown = make_session(
            status=SessionStatus.ACTIVE, current_question_index=1, question_phase=QuestionPhase.ANSWERS_SHOWN,
            revealed_through=0,
        )
        revealed = shown.model_copy(update={"question_phase": QuestionPhase.REVEALED, "revealed_through": 1})

        self.assertFalse(question_revealed(shown))
        self.assertTrue(question_revealed(revealed))
        self.assertFalse(question_revealed(make_session()))

    def test_stays_revealed_once_the_game_is_finished(self):
        finished = make_session(
            status=SessionStatus.FINISHED, current_question_index=2, question_phase=None, revealed_through=2
        )

        self.assertEqual(derive_phase(finished), QuestionPhase.FINISHED)
        self.assertTrue(question_revealed(finished))
